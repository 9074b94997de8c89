import json
import unittest

from doc_intake.classification import (
    CLASSIFICATION_SCHEMA,
    ClassificationResult,
    Classifier,
    build_classification_prompt,
    parse_classification_response,
    reconcile,
)
from doc_intake.errors import MalformedModelOutput
from doc_intake.taxonomy_store import TypeEntry

TAXONOMY = [
    TypeEntry(name="Invoice", description="Счёт на оплату"),
    TypeEntry(name="report", description="Стандартный отчёт"),
]


class FakeCompletionService:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def complete(self, model, prompt, schema):
        self.calls.append({"model": model, "prompt": prompt, "schema": schema})
        return self.response


class TestClassificationPrompt(unittest.TestCase):
    def test_prompt_lists_taxonomy_and_document_text(self):
        prompt = build_classification_prompt("Invoice #123, total $500", TAXONOMY)

        self.assertIn("Invoice — Счёт на оплату", prompt)
        self.assertIn("report — Стандартный отчёт", prompt)
        self.assertIn("single word", prompt)
        self.assertIn("summary", prompt)
        self.assertTrue(prompt.rstrip().endswith("Invoice #123, total $500"))


class TestParseClassificationResponse(unittest.TestCase):
    def test_unwraps_chat_message_envelope(self):
        response = {
            "model": "gemma3n:e4b-it-fp16",
            "message": {
                "role": "assistant",
                "content": json.dumps({"type": "Invoice", "summary": "An invoice for $500 total."}),
            },
        }

        result = parse_classification_response(response)

        self.assertEqual(result, ClassificationResult(type="invoice", summary="An invoice for $500 total."))

    def test_accepts_bare_payload(self):
        result = parse_classification_response({"type": "REPORT", "summary": "Quarterly figures overview."})

        self.assertEqual(result.type, "report")

    def test_rejects_invalid_json_content(self):
        with self.assertRaises(MalformedModelOutput):
            parse_classification_response({"message": {"content": "not json"}})

    def test_rejects_short_summary(self):
        with self.assertRaises(MalformedModelOutput):
            parse_classification_response({"type": "invoice", "summary": "short"})

    def test_rejects_empty_type(self):
        with self.assertRaises(MalformedModelOutput):
            parse_classification_response({"type": "", "summary": "A long enough summary."})

    def test_rejects_missing_fields(self):
        with self.assertRaises(MalformedModelOutput):
            parse_classification_response({"error": "model not found"})


class TestReconcile(unittest.TestCase):
    def test_known_type_matches_case_insensitively(self):
        reconciled = reconcile(ClassificationResult(type="invoice", summary="Invoice #123, total $500."), TAXONOMY)

        self.assertFalse(reconciled.is_new_type)
        self.assertEqual(reconciled.description, "Счёт на оплату")
        self.assertEqual(
            reconciled.to_response(),
            {
                "type": "invoice",
                "summary": "Invoice #123, total $500.",
                "description": "Счёт на оплату",
                "isNewType": False,
            },
        )

    def test_unknown_type_is_flagged_as_new(self):
        reconciled = reconcile(ClassificationResult(type="contract", summary="Service agreement text."), TAXONOMY)

        self.assertTrue(reconciled.is_new_type)
        self.assertIsNone(reconciled.description)


class TestClassifier(unittest.IsolatedAsyncioTestCase):
    async def test_classify_sends_schema_and_model(self):
        service = FakeCompletionService(
            {"message": {"content": '{"type": "Invoice", "summary": "Invoice #123 with a total of $500."}'}}
        )
        classifier = Classifier(service)

        result = await classifier.classify("Invoice #123, total $500", TAXONOMY, "llama3:8b")

        self.assertEqual(result.type, "invoice")
        self.assertEqual(service.calls[0]["model"], "llama3:8b")
        self.assertEqual(service.calls[0]["schema"], CLASSIFICATION_SCHEMA)
        self.assertIn("Invoice #123, total $500", service.calls[0]["prompt"])

    async def test_classify_propagates_malformed_output(self):
        classifier = Classifier(FakeCompletionService({"message": {"content": "{}"}}))

        with self.assertRaises(MalformedModelOutput):
            await classifier.classify("text", TAXONOMY, "llama3:8b")


if __name__ == "__main__":
    unittest.main()
