"""Tests for column identification and per-column field extraction."""

import base64

from bs4 import BeautifulSoup

from devicescrape.html_utils import (
    FIELD_QUERIES,
    build_camera,
    extract_cameras,
    extract_column_hrefs,
    extract_column_values,
    extract_scores,
    match_columns,
    transpose_cameras,
    value_at,
)
from devicescrape.models import CameraRecord


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


class TestMatchColumns:
    """Slugs are attributed to columns longest first, in column order."""

    def test_longest_slug_claims_its_column_first(self):
        hrefs = ["/en/where-to-buy-galaxy-s24-ultra", "/en/where-to-buy-galaxy-s24"]
        matched = match_columns(["galaxy-s24", "galaxy-s24-ultra"], hrefs)
        assert matched == [(0, "galaxy-s24-ultra"), (1, "galaxy-s24")]

    def test_result_follows_column_order_not_request_order(self):
        hrefs = ["/en/where-to-buy-google-pixel-8", "/en/where-to-buy-apple-iphone-15"]
        matched = match_columns(["apple-iphone-15", "google-pixel-8"], hrefs)
        assert [slug for _, slug in matched] == ["google-pixel-8", "apple-iphone-15"]

    def test_unmatched_slugs_are_left_out(self):
        matched = match_columns(["apple-iphone-15", "google-pixel-8"], ["/en/where-to-buy-google-pixel-8"])
        assert matched == [(0, "google-pixel-8")]

    def test_each_href_is_consumed_once(self):
        # Two slugs that both fit the only column
        matched = match_columns(["pixel-8", "pixel-8-pro"], ["/en/where-to-buy-pixel-8-pro"])
        assert matched == [(0, "pixel-8-pro")]


class TestColumnHrefs:
    def test_plain_and_encoded_links(self):
        encoded = base64.b64encode(b"/en/where-to-buy-google-pixel-8").decode()
        html = (
            '<div class="device-intro-images">'
            '<a class="more" href="/en/where-to-buy-apple-iphone-15">More</a>'
            f'<span class="more" data-kdecode="{encoded}">More</span>'
            "</div>"
        )
        assert extract_column_hrefs(_soup(html)) == [
            "/en/where-to-buy-apple-iphone-15",
            "/en/where-to-buy-google-pixel-8",
        ]

    def test_broken_encoding_is_skipped(self):
        html = '<div class="device-intro-images"><span class="more" data-kdecode="%%%"></span></div>'
        assert extract_column_hrefs(_soup(html)) == []


class TestFieldQueries:
    """Field queries return one value per page column."""

    def test_values_per_column(self, comparison_html, galaxy_column, pixel_column):
        soup = _soup(comparison_html([galaxy_column, pixel_column]))

        assert extract_column_values(soup, FIELD_QUERIES["weight_g"]) == [233.0, 187.0]
        assert extract_column_values(soup, FIELD_QUERIES["release_date"]) == ["2024-01-01", "2023-10-01"]
        assert extract_column_values(soup, FIELD_QUERIES["full_name"]) == [
            ("Samsung", "Galaxy S24 Ultra"),
            ("Google", "Pixel 8"),
        ]
        assert extract_column_values(soup, FIELD_QUERIES["cpu_cores"]) == [
            ["1x3390", "3x3100"],
            ["1x2910", "4x2370", "4x1700"],
        ]

    def test_dimensions_and_image(self, comparison_html, galaxy_column):
        soup = _soup(comparison_html([galaxy_column]))

        assert extract_column_values(soup, FIELD_QUERIES["size"]) == [(79.0, 162.3, 8.6)]
        assert extract_column_values(soup, FIELD_QUERIES["image_url"]) == [
            "https://cdn.kimovil.com/phones/s24u/big.jpg"
        ]

    def test_cell_without_list_keeps_its_column(self, comparison_html, galaxy_column, pixel_column):
        pixel = dict(pixel_column, others=None)
        soup = _soup(comparison_html([pixel, galaxy_column]))

        assert extract_column_values(soup, FIELD_QUERIES["others"]) == [
            [],
            ["NFC", "Headphone Jack", "FM Radio", "NFC"],
        ]

    def test_intro_column_without_photo_or_versions(self, comparison_html, galaxy_column, pixel_column):
        pixel = dict(pixel_column, image=None, versions=None)
        soup = _soup(comparison_html([pixel, galaxy_column]))

        assert extract_column_values(soup, FIELD_QUERIES["image_url"]) == [
            None,
            "https://cdn.kimovil.com/phones/s24u/big.jpg",
        ]
        pixel_skus, galaxy_skus = extract_column_values(soup, FIELD_QUERIES["skus"])
        assert pixel_skus is None
        assert len(galaxy_skus) == 2

    def test_missing_field_yields_no_values(self, comparison_html, galaxy_column):
        soup = _soup(comparison_html([galaxy_column]))
        assert extract_column_values(soup, FIELD_QUERIES["ip_rating"]) == []

    def test_value_at_out_of_range(self):
        assert value_at([1, 2], 1) == 2
        assert value_at([1, 2], 2) is None
        assert value_at([], 0) is None


class TestCameras:
    """Attribute-major camera tables become per-device camera lists."""

    def test_build_camera_cleans_placeholders(self):
        camera = build_camera({"Camera type": "Standard", "Resolution": "50 MP",
                               "Aperture": "Unknown", "Sensor": "--"})
        assert camera == CameraRecord(resolution_mp=50.0, aperture_fstop=None, sensor=None, type="Standard")

    def test_build_camera_without_resolution(self):
        assert build_camera({"Camera type": "ToF", "Resolution": "--"}) is None

    def test_transpose_keeps_slot_order_and_drops_gaps(self):
        main_a = CameraRecord(resolution_mp=200.0, type="Standard")
        main_b = CameraRecord(resolution_mp=50.0, type="Standard")
        tele_a = CameraRecord(resolution_mp=50.0, type="Telephoto")
        assert transpose_cameras([[main_a, main_b], [tele_a, None]]) == [[main_a, tele_a], [main_b]]

    def test_rear_then_front_per_device(self, comparison_html, galaxy_column, pixel_column):
        cameras = extract_cameras(_soup(comparison_html([galaxy_column, pixel_column])))

        assert len(cameras) == 2
        galaxy, pixel = cameras
        assert [(c.resolution_mp, c.type) for c in galaxy] == [
            (200.0, "Standard"),
            (50.0, "Telephoto"),
            (12.0, "Selfie"),
        ]
        assert galaxy[0].aperture_fstop == "1.7"
        assert galaxy[0].sensor == "ISOCELL HP2"
        assert galaxy[1].sensor is None
        assert [(c.resolution_mp, c.type) for c in pixel] == [(50.0, "Standard"), (10.5, "Selfie")]
        assert pixel[0].aperture_fstop is None

    def test_page_without_cameras(self):
        assert extract_cameras(_soup("<html><body></body></html>")) == []


class TestScores:
    def test_scores_per_column(self, comparison_html, galaxy_column, pixel_column):
        scores = extract_scores(_soup(comparison_html([galaxy_column, pixel_column])))
        assert scores[0] == {"ki": "8.1", "design": "9.0"}
        assert scores[1]["ki"] == "7.4"
