# drugSuggestions.py
import json
from collections import namedtuple

from flask import current_app
from openai import OpenAI

Suggestion = namedtuple("Suggestion", ["drugs", "reasoning"])

GENERIC_ERROR = "An unexpected error occurred. Please try again."

PROMPT_TEMPLATE = """You are an AI assistant that suggests drug prescriptions based on patient history and chief complaints.

Consider the following patient history and chief complaint:

Patient History: {patient_history}
Chief Complaint: {chief_complaint}

Suggest a list of drug prescriptions that would be appropriate for this patient, and explain your reasoning.
Format the output as a JSON object with "suggestedDrugs" and "reasoning" fields."""


class DrugSuggestionError(Exception):
    def __init__(self, message=GENERIC_ERROR):
        super().__init__(message)


def parse_suggestion(text):
    """Pull {"suggestedDrugs": [...], "reasoning": "..."} out of a model reply."""
    # models often wrap the object in prose or a ```json fence
    text = text or ""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("no JSON object in reply")
    payload = json.loads(text[start:end + 1])
    drugs = payload.get("suggestedDrugs")
    reasoning = payload.get("reasoning")
    if not isinstance(drugs, list) or not isinstance(reasoning, str):
        raise ValueError("reply does not match the suggestion schema")
    return Suggestion(drugs=[str(d) for d in drugs], reasoning=reasoning)


class DrugSuggestionClient:
    """One stateless prompt call per suggestion: no retries, caching or streaming."""

    def __init__(self, api_key=None, base_url=None, model=None, client=None):
        self.model = model
        self.client = client or OpenAI(base_url=base_url, api_key=api_key)

    def suggest(self, patient_history, chief_complaint):
        prompt = PROMPT_TEMPLATE.format(patient_history=patient_history, chief_complaint=chief_complaint)
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.2,
            )
            return parse_suggestion(completion.choices[0].message.content)
        except Exception as e:
            current_app.logger.error(f"[suggest] Error: {e}")
            raise DrugSuggestionError() from e


def get_suggestion_client():
    client = current_app.config.get("DRUG_SUGGESTION_CLIENT")
    if client is None:
        client = DrugSuggestionClient(
            api_key=current_app.config.get("OPENAI_API_KEY"),
            base_url=current_app.config.get("OPENAI_BASE_URL"),
            model=current_app.config.get("SUGGESTION_MODEL"),
        )
    return client
