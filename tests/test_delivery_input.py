#!/usr/bin/env python3
"""Tests for coordinates in text, Google Maps links and delivery quotes."""
import os
import sys
import unittest
from unittest import mock

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
from pizzeria_bot.app import delivery
from pizzeria_bot.schemas.session_models import LatLng, Session


def _response(status_code=200, location=None):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.headers = {"location": location} if location else {}
    return resp


class TestCoordsFromText(unittest.TestCase):
    def test_decimal_pair(self):
        coords = delivery.parse_coords_from_text("estoy aquí -12.0538, -75.2092 gracias")
        self.assertEqual(coords, LatLng(lat=-12.0538, lng=-75.2092))

    def test_out_of_range_is_rejected(self):
        self.assertIsNone(delivery.parse_coords_from_text("95.1234, 10.5"))
        self.assertIsNone(delivery.parse_coords_from_text("10.5, 190.25"))

    def test_integers_are_not_coordinates(self):
        self.assertIsNone(delivery.parse_coords_from_text("Av. Larco 123, 456"))

    def test_strip_coords_keeps_address_text(self):
        self.assertEqual(delivery.strip_coords("Av. Larco 123 -12.1219,-77.0297"), "Av. Larco 123")

    def test_maps_url_detection(self):
        url = delivery.extract_first_url("mira https://maps.app.goo.gl/AbCd123). gracias")
        self.assertEqual(url, "https://maps.app.goo.gl/AbCd123")
        self.assertTrue(delivery.is_maps_url(url))
        self.assertFalse(delivery.is_maps_url("https://example.com/x"))
        self.assertFalse(delivery.is_maps_url(None))

    def test_only_maps_hosts_count(self):
        for url in (
            "https://maps.app.goo.gl/AbCd123",
            "https://goo.gl/maps/xyz",
            "https://www.google.com/maps/place/X",
            "https://google.com.pe/maps/@-12.05,-77.04,17z",
            "https://maps.google.com/?q=-12.06,-77.03",
        ):
            with self.subTest(url=url):
                self.assertTrue(delivery.is_maps_url(url))
        for url in (
            "http://169.254.169.254/latest/meta-data?x=google.com/maps",
            "https://evil.example/google.com/maps",
            "https://google.com.evil.example/maps",
            "https://maps.google.com@10.0.0.1/",
            "https://goo.gl/abc",
            "https://www.google.com/search?q=maps",
            "https://maps.app.goo.gl:8080/x",
            "ftp://maps.google.com/x",
        ):
            with self.subTest(url=url):
                self.assertFalse(delivery.is_maps_url(url))


class TestMapsLinks(unittest.TestCase):
    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_place_pattern_after_redirect(self, mock_get):
        mock_get.side_effect = [
            _response(301, "https://www.google.com/maps/place/X/data=!3d-12.1219!4d-77.0297"),
            _response(200),
        ]
        coords = delivery.coords_from_maps_url("https://maps.app.goo.gl/AbCd123")
        self.assertEqual(coords, LatLng(lat=-12.1219, lng=-77.0297))
        self.assertFalse(mock_get.call_args.kwargs["allow_redirects"])

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_at_and_query_patterns(self, mock_get):
        mock_get.return_value = _response(200)
        at = delivery.coords_from_maps_url("https://www.google.com/maps/@-12.05,-77.04,17z")
        query = delivery.coords_from_maps_url("https://maps.google.com/?q=-12.06,-77.03")
        self.assertEqual(at, LatLng(lat=-12.05, lng=-77.04))
        self.assertEqual(query, LatLng(lat=-12.06, lng=-77.03))

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_redirect_hops_are_capped(self, mock_get):
        mock_get.return_value = _response(302, "/next")
        final = delivery.resolve_final_url("https://maps.app.goo.gl/loop")
        self.assertEqual(mock_get.call_count, delivery.MAX_REDIRECT_HOPS)
        self.assertEqual(final, "https://maps.app.goo.gl/next")

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_redirect_off_maps_is_not_fetched(self, mock_get):
        mock_get.return_value = _response(302, "http://10.0.0.5/admin?ll=-12.06,-77.03")
        final = delivery.resolve_final_url("https://maps.app.goo.gl/AbCd123")
        self.assertEqual(final, "http://10.0.0.5/admin?ll=-12.06,-77.03")
        mock_get.assert_called_once()
        self.assertEqual(mock_get.call_args.args[0], "https://maps.app.goo.gl/AbCd123")

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_non_maps_url_is_never_fetched(self, mock_get):
        delivery.resolve_final_url("http://169.254.169.254/latest/meta-data?x=google.com/maps")
        mock_get.assert_not_called()

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_network_failure_yields_none(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("offline")
        self.assertIsNone(delivery.coords_from_maps_url("https://maps.app.goo.gl/AbCd123"))

    @mock.patch("pizzeria_bot.app.delivery.requests.get")
    def test_link_without_coordinates(self, mock_get):
        mock_get.return_value = _response(200)
        self.assertIsNone(delivery.coords_from_maps_url("https://www.google.com/maps/place/Miraflores"))


class TestQuote(unittest.TestCase):
    def test_nearby_location_pays_minimum(self):
        origin = LatLng(lat=-12.0464, lng=-77.0428)
        quote = delivery.quote_delivery(LatLng(lat=-12.0470, lng=-77.0430), origin=origin, rate_per_km=1.5)
        self.assertEqual(quote.cost, 3.0)
        self.assertLess(quote.distance_km, 0.2)

    def test_far_location_is_rounded_up(self):
        origin = LatLng(lat=0.0, lng=0.0)
        quote = delivery.quote_delivery(LatLng(lat=0.0, lng=0.05), origin=origin, rate_per_km=1.5)
        # 5.56 km * 1.5 = 8.34
        self.assertEqual(quote.cost, 8.5)
        self.assertAlmostEqual(quote.distance_km, 5.56, places=2)

    def test_apply_delivery_from_coords(self):
        session = Session(phone="51999999999")
        delivery.apply_delivery_from_coords(session, LatLng(lat=0.0, lng=0.0), origin=LatLng(lat=0.0, lng=0.0))
        self.assertEqual(session.delivery.cost, 3.0)

    def test_minimum_fee_ignores_environment(self):
        origin = LatLng(lat=-12.0464, lng=-77.0428)
        with mock.patch.dict(os.environ, {"MINIMUM_DELIVERY_FEE": "0.5"}):
            quote = delivery.quote_delivery(LatLng(lat=-12.0470, lng=-77.0430), origin=origin, rate_per_km=0.1)
        self.assertEqual(quote.cost, 3.0)


if __name__ == "__main__":
    unittest.main()
