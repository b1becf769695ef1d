import unittest
from unittest.mock import Mock

from xmppterm import builder
from xmppterm.const import StreamState
from xmppterm.namespaces import Namespace
from xmppterm.sasl import AuthFail
from xmppterm.sasl import SASL
from xmppterm.sasl import SCRAM_SHA_1
from xmppterm.util import b64encode

# Test vector from https://wiki.xmpp.org/web/SASL_and_SCRAM-SHA-1


class SCRAM(unittest.TestCase):
    def setUp(self):
        self.maxDiff = None
        self._username = "user"
        self._password = "pencil"
        self._mechanism = SCRAM_SHA_1(self._username, self._password, None)
        self._mechanism._client_nonce = "fyko+d2lbbFgONRv9qkxdawL"

    def test_auth(self):
        initial = b64encode("n,,n=user,r=fyko+d2lbbFgONRv9qkxdawL")
        data = self._mechanism.get_initiate_data()
        self.assertEqual(data, initial)

        challenge = b64encode(
            "r=fyko+d2lbbFgONRv9qkxdawL3rfcNHYJY1ZVvWVs7j,s=QSXCR+Q6sek8bf92,i=4096"
        )
        data = self._mechanism.get_response_data(challenge)

        response = b64encode(
            "c=biws,r=fyko+d2lbbFgONRv9qkxdawL3rfcNHYJY1ZVvWVs7j,"
            "p=v0X8v3Bz2T0CJGbJQyF0X+HI4Ts="
        )
        self.assertEqual(data, response)

        success = b64encode("v=rmF9pqV8S7suAoZWja4dJRkFsKQ=")
        self._mechanism.validate_success_data(success)

    def test_invalid_server_signature(self):
        self._mechanism.get_initiate_data()
        challenge = b64encode(
            "r=fyko+d2lbbFgONRv9qkxdawL3rfcNHYJY1ZVvWVs7j,s=QSXCR+Q6sek8bf92,i=4096"
        )
        self._mechanism.get_response_data(challenge)

        with self.assertRaises(AuthFail):
            self._mechanism.validate_success_data(
                b64encode("v=AAAAAAAAAAAAAAAAAAAAAAAAAAA=")
            )

    def test_low_iteration_count(self):
        self._mechanism.get_initiate_data()
        challenge = b64encode(
            "r=fyko+d2lbbFgONRv9qkxdawL3rfcNHYJY1ZVvWVs7j,s=QSXCR+Q6sek8bf92,i=1024"
        )
        with self.assertRaises(AuthFail):
            self._mechanism.get_response_data(challenge)

    def test_foreign_nonce(self):
        self._mechanism.get_initiate_data()
        challenge = b64encode("r=somethingelse123456789012,s=QSXCR+Q6sek8bf92,i=4096")
        with self.assertRaises(AuthFail):
            self._mechanism.get_response_data(challenge)


class MechanismSelection(unittest.TestCase):
    def setUp(self):
        self.client = Mock()
        self.client.log_context = "test"
        self.client.username = "user"
        self.client.domain = "example.org"
        self.client.mechs = {"SCRAM-SHA-512", "SCRAM-SHA-256", "SCRAM-SHA-1", "PLAIN"}
        self.client.is_stream_secure = True
        self.sasl = SASL(self.client)
        self.sasl.set_password("pencil")

    @staticmethod
    def _make_features(*mechs):
        features = builder.E("features", namespace=Namespace.STREAMS)
        mechanisms = features.add_tag("mechanisms", namespace=Namespace.SASL)
        for mech in mechs:
            mechanisms.add_tag("mechanism").text = mech
        return features

    def _sent_mechanism(self):
        nonza = self.client.send_nonza.call_args[0][0]
        return nonza.get("mechanism")

    def test_strongest_common_mechanism(self):
        self.sasl.start_auth(self._make_features("PLAIN", "SCRAM-SHA-1", "SCRAM-SHA-256"))
        self.assertEqual(self._sent_mechanism(), "SCRAM-SHA-256")
        self.assertEqual(self.sasl.mechanism, "SCRAM-SHA-256")

    def test_restricted_mechanisms(self):
        self.client.mechs = {"SCRAM-SHA-1"}
        self.sasl.start_auth(self._make_features("PLAIN", "SCRAM-SHA-1", "SCRAM-SHA-256"))
        self.assertEqual(self._sent_mechanism(), "SCRAM-SHA-1")

    def test_no_plain_on_insecure_stream(self):
        self.client.is_stream_secure = False
        self.sasl.start_auth(self._make_features("PLAIN"))

        self.client.send_nonza.assert_not_called()
        self.client.set_state.assert_called_once_with(StreamState.AUTH_FAILED)
        self.assertEqual(self.sasl.error.condition, "no-common-mechanism")

    def test_failure_condition(self):
        self.sasl.start_auth(self._make_features("PLAIN"))
        failure = builder.E("failure", namespace=Namespace.SASL)
        failure.add_tag("not-authorized", namespace=Namespace.SASL)
        failure.add_tag_text("text", "Wrong password", namespace=Namespace.SASL)
        self.sasl.delegate(failure)

        self.client.set_state.assert_called_once_with(StreamState.AUTH_FAILED)
        self.assertEqual(self.sasl.error.condition, "not-authorized")


if __name__ == "__main__":
    unittest.main()
