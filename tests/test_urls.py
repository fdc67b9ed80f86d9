# tests/test_urls.py
import pytest

from rentalindex.urls import absolute_url, canonicalize_url

URLS = [
    "https://www.realestate.com.kh/rent/bkk-1/2-bed-condo-259490/?utm_source=fb&utm_medium=post",
    "https://ips-cambodia.com/listing-details/rental/101-two-bed-condo-bkk1/",
    "https://www.khmer24.com/en/condo-for-rent-in-bkk1-12345678.html?page=2&fbclid=abc",
    "http://example.com:8080/a/b/?x=1&gclid=zzz&msclkid=q",
    "https://example.com/",
]


@pytest.mark.parametrize("url", URLS)
def test_canonicalize_is_idempotent(url):
    once = canonicalize_url(url)
    assert canonicalize_url(once) == once


def test_tracking_params_and_www_do_not_change_identity():
    a = canonicalize_url("https://www.khmer24.com/en/condo-1234.html?utm_campaign=x&gclid=1")
    b = canonicalize_url("https://khmer24.com/en/condo-1234.html/")
    assert a == b == "https://khmer24.com/en/condo-1234.html"


def test_meaningful_query_params_survive():
    url = canonicalize_url("https://example.com/search?page=3&utm_source=x&q=bkk")
    assert url == "https://example.com/search?page=3&q=bkk"


def test_default_port_dropped_other_port_kept():
    assert canonicalize_url("https://example.com:443/a") == "https://example.com/a"
    assert canonicalize_url("http://example.com:8080/a") == "http://example.com:8080/a"


def test_absolute_url():
    assert absolute_url("/en/x-1.html", "https://www.khmer24.com") == "https://www.khmer24.com/en/x-1.html"
    assert absolute_url("//cdn.example.com/a.jpg", "https://x") == "https://cdn.example.com/a.jpg"
    assert absolute_url("https://a.com/b", "https://x") == "https://a.com/b"
