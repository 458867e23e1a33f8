"""Few-shot prompt templates behind the one-shot commands (``/q``, ``/bash`` ...).

A template answers a single input without touching the conversation: the
few-shot text and the input are sent as one user message and the reply is
cut at the first line that starts a new example.
"""

from __future__ import annotations

from dataclasses import dataclass

_INSTRUCTION = (
    "Continue the pattern in the user's message. Reply with only the text that "
    "completes the last entry, without repeating its label."
)

_QUESTION = """I am a highly intelligent question answering bot. If you ask me a question that is rooted in truth, I will give you the answer. If you ask me a question that is nonsense, trickery, or has no clear answer, I will respond with "Unknown".

Q: What is human life expectancy in the United States?
A: Human life expectancy in the United States is 78 years.

Q: Who was president of the United States in 1955?
A: Dwight D. Eisenhower was president of the United States in 1955.

Q: What is the square root of banana?
A: Unknown

Q: How does a telescope work?
A: Telescopes use lenses or mirrors to focus light and make objects appear closer.

Q: How many squigs are in a bonk?
A: Unknown

Q: """

_FACTUAL = """Q: Who is Batman?
A: Batman is a fictional comic book character.
###
Q: What is torsalplexity?
A: ?
###
Q: Who is George Lucas?
A: George Lucas is American film director and producer famous for creating Star Wars.
###
Q: What is the capital of California?
A: Sacramento.
###
Q: Who is Fred Rickerson?
A: ?
###
Q: What is an atom?
A: An atom is a tiny particle that makes up everything.
###
Q: """

_CORRECTION = """Non-standard English: If I'm stressed out about something, I tend to have problem to fall asleep.
Standard American English: If I'm stressed out about something, I tend to have a problem falling asleep.

Non-standard English: There is plenty of fun things to do in the summer when your able to go outside.
Standard American English: There are plenty of fun things to do in the summer when you are able to go outside.

Non-standard English: She no went to the market.
Standard American English: She didn't go to the market.

Non-standard English: """

_MARV = """Marv is a chatbot that reluctantly answers questions.
###
User: How many pounds are in a kilogram?
Marv: This again? There are 2.2 pounds in a kilogram. Please make a note of this.
###
User: What does HTML stand for?
Marv: Was Google too busy? Hypertext Markup Language. The T is for try to ask better questions in the future.
###
User: When did the first airplane fly?
Marv: On December 17, 1903, Wilbur and Orville Wright made the first flights. I wish they'd come and take me away.
###
User: """

_BASH = """Input: List files
Output: ls -l
Input: Count files in a directory
Output: ls -l | wc -l
Input: Disk space used by home directory
Output: du ~
Input: Replace foo with bar in all .py files
Output: sed -i .bak -- 's/foo/bar/g' *.py
Input: Delete the models subdirectory
Output: rm -rf ./models
Input: """


@dataclass(frozen=True)
class PromptTemplate:
    command: str
    description: str
    before: str
    after: str
    max_tokens: int
    stop: tuple[str, ...] = ()

    def messages(self, text: str) -> list[dict]:
        return [
            {"role": "system", "content": _INSTRUCTION},
            {"role": "user", "content": self.before + text.strip() + self.after},
        ]

    def format_answer(self, completion: str) -> str:
        answer = completion.strip()
        for marker in self.stop:
            cut = answer.find(marker)
            if cut != -1:
                answer = answer[:cut]
        return answer.strip()


PROMPT_TEMPLATES: dict[str, PromptTemplate] = {
    t.command: t
    for t in (
        PromptTemplate("q", "ask a question", _QUESTION, "\nA:", 100, stop=("\n\n", "\nQ:")),
        PromptTemplate(
            "qf",
            "ask a question, but the answer probably won't be made up",
            _FACTUAL,
            "\nA:",
            60,
            stop=("###", "\nQ:"),
        ),
        PromptTemplate(
            "c",
            "convert sentence to the correct English",
            _CORRECTION,
            "\nStandard American English:",
            60,
            stop=("\n",),
        ),
        PromptTemplate("marv", "use a bot reluctantly giving answers", _MARV, "\nMarv:", 60, stop=("###", "\nUser:")),
        PromptTemplate(
            "analogy",
            "explain an analogy",
            "Create an analogy for this phrase:\n\n",
            " in that:",
            60,
            stop=("\n\n",),
        ),
        PromptTemplate("bash", "convert text to bash command", _BASH, "\nOutput:", 100, stop=("\nInput:",)),
    )
}
