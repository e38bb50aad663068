import unittest
from unittest.mock import MagicMock, patch

import requests

from catalog.errors import NotFoundError, TransportError
from catalog.functions import HttpFunctionClient, InMemoryFunctionClient


class InMemoryFunctionClientTests(unittest.TestCase):
    def test_hello_world_is_registered(self):
        client = InMemoryFunctionClient(record_history=True)
        self.assertEqual(
            client.invoke("hello-world", {"name": "Python"}),
            {"message": "Hello Python!"},
        )
        self.assertEqual(client.calls, [("hello-world", {"name": "Python"})])

    def test_calls_not_kept_by_default(self):
        client = InMemoryFunctionClient()
        client.invoke("hello-world", {"name": "Python"})
        self.assertEqual(client.calls, [])

    def test_register_and_unknown(self):
        client = InMemoryFunctionClient()
        client.register("echo", lambda body: body)
        self.assertEqual(client.invoke("echo", {"a": 1}), {"a": 1})
        with self.assertRaises(NotFoundError):
            client.invoke("missing", {})


class HttpFunctionClientTests(unittest.TestCase):
    def setUp(self):
        self.client = HttpFunctionClient(
            base_url="https://project.example.test/functions/v1/",
            api_key="anon-key",
            timeout=5,
        )

    def test_sends_auth_headers(self):
        self.assertEqual(
            self.client.session.headers["Authorization"], "Bearer anon-key"
        )
        self.assertEqual(self.client.session.headers["apikey"], "anon-key")

    def test_invoke_posts_json(self):
        response = MagicMock()
        response.json.return_value = {"message": "Hello Python!"}
        with patch.object(self.client.session, "post", return_value=response) as post:
            result = self.client.invoke("hello-world", {"name": "Python"})

        self.assertEqual(result, {"message": "Hello Python!"})
        post.assert_called_once_with(
            "https://project.example.test/functions/v1/hello-world",
            json={"name": "Python"},
            timeout=5,
        )

    def test_http_error_is_transport_error(self):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("500")
        with patch.object(self.client.session, "post", return_value=response):
            with self.assertRaises(TransportError):
                self.client.invoke("hello-world", {})

    def test_connection_error_is_transport_error(self):
        with patch.object(
            self.client.session, "post", side_effect=requests.ConnectionError("down")
        ):
            with self.assertRaises(TransportError):
                self.client.invoke("hello-world", {})

    def test_non_json_body_is_transport_error(self):
        response = MagicMock()
        response.json.side_effect = ValueError("no json")
        with patch.object(self.client.session, "post", return_value=response):
            with self.assertRaises(TransportError):
                self.client.invoke("hello-world", {})


if __name__ == "__main__":
    unittest.main()
