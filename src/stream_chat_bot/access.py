from collections.abc import Iterable


class AllowList:
    """User ids permitted to talk to the bot. An empty list admits everyone."""

    def __init__(self, user_ids: Iterable[object] = ()):
        self._user_ids = {str(u).strip() for u in user_ids if str(u).strip()}

    @property
    def open(self) -> bool:
        return not self._user_ids

    def allows(self, user_id: str) -> bool:
        return self.open or user_id in self._user_ids

    def describe(self) -> str:
        if self.open:
            return "everyone"
        return f"{len(self._user_ids)} user(s)"
