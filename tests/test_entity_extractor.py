#!/usr/bin/env python3
"""Tests for the name/address heuristics and the LLM-backed validators."""
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))
from fakes import ScriptedProvider

from pizzeria_bot.nlu import entity_extractor as ee
from pizzeria_bot.nlu.llm_router import classify_user_text, extract_address_and_name, validate_address, validate_name
from pizzeria_bot.nlu.rules import is_greeting_only, looks_like_address, looks_like_order


class TestNameStrategies(unittest.TestCase):
    def test_explicit_intro_wins(self):
        candidate = ee.find_name_candidate(ee.NameContext("hola, me llamo Ana Torres", has_pending_address=True))
        self.assertEqual(candidate.name, "Ana Torres")
        self.assertEqual(candidate.source, "intro")

    def test_first_line_when_address_pending(self):
        ctx = ee.NameContext("Ana Torres\nJr. Lima 456", has_pending_address=True)
        candidate = ee.find_name_candidate(ctx)
        self.assertEqual(candidate.name, "Ana Torres")
        self.assertEqual(candidate.remainder, "Jr. Lima 456")
        self.assertEqual(candidate.source, "first_line")

    def test_whole_text_only_with_context(self):
        self.assertIsNone(ee.find_name_candidate(ee.NameContext("Ana Torres")))
        asked = ee.find_name_candidate(ee.NameContext("Ana Torres", waiting_for_name=True))
        self.assertEqual(asked.source, "asked")

    def test_first_match_respects_order(self):
        seen = []

        def first(value):
            seen.append("first")
            return None

        def second(value):
            seen.append("second")
            return "hit"

        def third(value):
            seen.append("third")
            return "late"

        self.assertEqual(ee.first_match([first, second, third], "x"), "hit")
        self.assertEqual(seen, ["first", "second"])


class TestNameAcceptance(unittest.TestCase):
    def test_accepts_plain_names(self):
        self.assertTrue(ee.is_acceptable_name("Juan Pérez"))
        self.assertTrue(ee.is_acceptable_name("María José de la Cruz"))

    def test_rejects_non_names(self):
        for text in ("Av. Larco 123", "Juan, Pérez", "quiero una pizza", "hola", "confirmar",
                     "ver carrito", "uno dos tres cuatro cinco seis", "J"):
            with self.subTest(text=text):
                self.assertFalse(ee.is_acceptable_name(text))

    def test_clean_name(self):
        self.assertEqual(ee.clean_name("  juan   pérez "), "Juan Pérez")
        self.assertEqual(ee.clean_name("McDonald"), "McDonald")


class TestAddressStrategies(unittest.TestCase):
    def test_street_cue_keeps_whole_address(self):
        self.assertEqual(ee.find_address_continuation("Av. Larco 123, Miraflores"), "Av. Larco 123, Miraflores")

    def test_sentence_forms(self):
        self.assertEqual(ee.find_address_continuation("entregar en Calle Los Pinos 456"), "Calle Los Pinos 456")
        self.assertEqual(ee.find_address_continuation("envíalo a jr. lima 456"), "jr. lima 456")

    def test_order_tail(self):
        self.assertEqual(ee.order_tail_address("una pizza grande a Jr. Lima 123"), "Jr. Lima 123")
        self.assertIsNone(ee.order_tail_address("una pizza grande"))

    def test_nothing_address_like(self):
        self.assertIsNone(ee.find_address_continuation("Juan Pérez"))
        self.assertIsNone(ee.find_address_continuation("   "))


class TestRules(unittest.TestCase):
    def test_looks_like_address(self):
        self.assertTrue(looks_like_address("Av. Larco 123, Miraflores"))
        self.assertTrue(looks_like_address("Los Pinos 456 Surco"))
        self.assertFalse(looks_like_address("ok gracias 123456789"))
        self.assertFalse(looks_like_address("https://maps.app.goo.gl/x1"))
        self.assertFalse(looks_like_address("Av. Larco"))

    def test_looks_like_order(self):
        self.assertTrue(looks_like_order("quiero una familiar"))
        self.assertFalse(looks_like_order("Juan Pérez"))

    def test_greeting_only(self):
        self.assertTrue(is_greeting_only("Hola", "hola", True))
        self.assertFalse(is_greeting_only("Hola", "hola", False))
        self.assertFalse(is_greeting_only("hola quiero pizza", "hola quiero pizza", True))


class TestLLMValidators(unittest.TestCase):
    def test_validate_name(self):
        provider = ScriptedProvider(completions=['```json\n{"isValid": true, "extractedName": " Ana "}\n```'])
        self.assertEqual(validate_name(provider, "soy ana 2"), "Ana")

    def test_invalid_name(self):
        provider = ScriptedProvider(completions=['{"isValid": false, "extractedName": null}'])
        self.assertIsNone(validate_name(provider, "123"))

    def test_malformed_output_is_nothing(self):
        provider = ScriptedProvider(completions=["no lo sé"])
        self.assertIsNone(validate_address(provider, "por ahí"))

    def test_provider_failure_is_nothing(self):
        provider = ScriptedProvider()
        self.assertIsNone(validate_name(provider, "Ana"))
        self.assertEqual(extract_address_and_name(provider, "Jr. Lima 456"), {"address": None, "name": None})
        self.assertEqual(classify_user_text(provider, "Jr. Lima 456"), "other")

    def test_extract_and_classify(self):
        provider = ScriptedProvider(completions=[
            '{"address": "Jr. Lima 456", "name": null}',
            "address",
        ])
        self.assertEqual(extract_address_and_name(provider, "Jr. Lima 456 por favor"),
                         {"address": "Jr. Lima 456", "name": None})
        self.assertEqual(classify_user_text(provider, "Jr. Lima 456"), "address")


if __name__ == "__main__":
    unittest.main()
