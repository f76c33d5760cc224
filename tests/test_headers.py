"""Unit tests for security response headers."""

import gzip

import httpx

from storeguard.web import SECURITY_HEADERS, apply_security_headers, get_security_headers


class TestSecurityHeaders:
    """Tests for apply_security_headers / get_security_headers."""

    def test_all_headers_applied(self):
        original = httpx.Response(200, json={'ok': True})
        secured = apply_security_headers(original)

        for name, value in SECURITY_HEADERS.items():
            assert secured.headers[name] == value
        assert secured.headers['X-Frame-Options'] == 'DENY'
        assert "frame-ancestors 'none'" in secured.headers['Content-Security-Policy']

    def test_body_and_status_preserved(self):
        original = httpx.Response(201, json={'id': 'p1'}, headers={'X-Request-Id': 'abc'})
        secured = apply_security_headers(original)

        assert secured.status_code == 201
        assert secured.json() == {'id': 'p1'}
        assert secured.headers['X-Request-Id'] == 'abc'
        assert secured.headers['Content-Type'] == 'application/json'

    def test_original_untouched(self):
        original = httpx.Response(200, text="hello")
        apply_security_headers(original)
        assert 'X-Frame-Options' not in original.headers

    def test_existing_header_replaced(self):
        original = httpx.Response(200, headers={'Cache-Control': 'public, max-age=3600'})
        secured = apply_security_headers(original)
        assert secured.headers.get_list('Cache-Control') == [SECURITY_HEADERS['Cache-Control']]

    def test_compressed_body_copied_decoded(self):
        body = gzip.compress(b"receipt data")
        original = httpx.Response(200, content=body, headers={'Content-Encoding': 'gzip'})
        secured = apply_security_headers(original)

        assert secured.content == b"receipt data"
        assert 'Content-Encoding' not in secured.headers
        assert secured.headers['Content-Length'] == str(len(b"receipt data"))

    def test_get_security_headers_returns_copy(self):
        headers = get_security_headers()
        headers['X-Frame-Options'] = 'SAMEORIGIN'
        assert SECURITY_HEADERS['X-Frame-Options'] == 'DENY'
        assert get_security_headers()['X-Frame-Options'] == 'DENY'
