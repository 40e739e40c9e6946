"""Localized spoken and displayed texts for the interaction engine."""

from voxsurvey.survey.models import Language, Question, QuestionKind

MESSAGES: dict[str, dict[Language, str]] = {
    "options": {
        Language.EN: ". Your options are: {options}",
        Language.KM: "។ ជម្រើសរបស់អ្នកគឺ៖ {options}",
    },
    "multi_hint": {
        Language.EN: '. You can select multiple options by saying them separated by "and".',
        Language.KM: "។ អ្នកអាចជ្រើសរើសច្រើនជម្រើស ដោយនិយាយបំបែកពួកវាដោយពាក្យ «និង»។",
    },
    "rating": {
        Language.EN: ". Please rate from 1 to 10, where 1 is not likely and 10 is very likely.",
        Language.KM: "។ សូមវាយតម្លៃពី ១ ដល់ ១០ ដែល ១ មិនទំនងទាល់តែសោះ ហើយ ១០ ទំនងខ្លាំងបំផុត។",
    },
    "confirm": {
        Language.EN: "You said: {answer}. Is that correct? Please say yes or no.",
        Language.KM: "អ្នកបាននិយាយថា៖ {answer}។ តើត្រឹមត្រូវទេ? សូមនិយាយ បាទ/ចាស ឬ ទេ។",
    },
    "apology": {
        Language.EN: "Sorry about that. Please say your answer again.",
        Language.KM: "សូមអភ័យទោស។ សូមនិយាយចម្លើយរបស់អ្នកម្តងទៀត។",
    },
    "no_speech": {
        Language.EN: "I didn't catch that. Please tap the microphone to try again.",
        Language.KM: "ខ្ញុំស្តាប់មិនបានច្បាស់ទេ។ សូមចុចមីក្រូហ្វូនដើម្បីព្យាយាមម្តងទៀត។",
    },
    "retry_limit": {
        Language.EN: "Voice input didn't work for this question. Please enter your answer manually.",
        Language.KM: "ការបញ្ចូលដោយសំឡេងមិនដំណើរការសម្រាប់សំណួរនេះទេ។ សូមបញ្ចូលចម្លើយដោយដៃ។",
    },
    "invalid": {
        Language.EN: "That doesn't match any of the options. Please try again.",
        Language.KM: "ចម្លើយនោះមិនត្រូវនឹងជម្រើសណាមួយទេ។ សូមព្យាយាមម្តងទៀត។",
    },
    "manual_confirm": {
        Language.EN: "Please check your answer and accept it or record again.",
        Language.KM: "សូមពិនិត្យចម្លើយរបស់អ្នក ហើយទទួលយក ឬថតម្តងទៀត។",
    },
    "confirm_unclear": {
        Language.EN: "I couldn't tell if that was a yes or a no. Please confirm your answer manually.",
        Language.KM: "ខ្ញុំមិនដឹងថាជា បាទ/ចាស ឬ ទេ។ សូមបញ្ជាក់ចម្លើយរបស់អ្នកដោយដៃ។",
    },
    "re_record_limit": {
        Language.EN: "Let's try a different way. Please select or type your answer.",
        Language.KM: "តោះសាកល្បងវិធីផ្សេង។ សូមជ្រើសរើស ឬវាយបញ្ចូលចម្លើយរបស់អ្នក។",
    },
    "confirmed": {
        Language.EN: "Answer saved.",
        Language.KM: "ចម្លើយត្រូវបានរក្សាទុក។",
    },
    "network": {
        Language.EN: "The speech service is not responding. Please answer manually.",
        Language.KM: "សេវាសំឡេងមិនឆ្លើយតបទេ។ សូមឆ្លើយដោយដៃ។",
    },
    "voice_disabled": {
        Language.EN: "Voice input is unavailable on this device. Please answer manually.",
        Language.KM: "ការបញ្ចូលដោយសំឡេងមិនអាចប្រើបាននៅលើឧបករណ៍នេះទេ។ សូមឆ្លើយដោយដៃ។",
    },
    "save_failed": {
        Language.EN: "Your answers could not be saved right now. We'll try again.",
        Language.KM: "មិនអាចរក្សាទុកចម្លើយរបស់អ្នកបានទេឥឡូវនេះ។ យើងនឹងព្យាយាមម្តងទៀត។",
    },
}

_LIST_SEPARATOR = {Language.EN: ", ", Language.KM: " "}


def message(key: str, language: Language, **values: str) -> str:
    """Return the *key* text for *language* with ``{placeholders}`` filled."""
    return MESSAGES[key][language].format(**values)


def join_labels(labels: list[str], language: Language) -> str:
    return _LIST_SEPARATOR[language].join(labels)


def question_text(question: Question, language: Language) -> str:
    """What gets read aloud when a question is activated."""
    text = question.prompt
    if question.is_choice:
        text += message("options", language, options=join_labels(question.labels, language))
        if question.kind == QuestionKind.MULTI_CHOICE:
            text += message("multi_hint", language)
    elif question.kind == QuestionKind.RATING:
        text += message("rating", language)
    return text


def confirmation_text(answer: str, language: Language) -> str:
    return message("confirm", language, answer=answer)
