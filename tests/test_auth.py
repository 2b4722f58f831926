import threading
import unittest

from accio.auth import AuthDecision, AuthorizationGate, SessionStore, generate_password


class SessionStoreTests(unittest.TestCase):
    def test_authorize_and_lookup(self):
        store = SessionStore()
        self.assertFalse(store.is_authorized("10.0.0.1"))
        store.authorize("10.0.0.1")
        store.authorize("10.0.0.1")
        self.assertTrue(store.is_authorized("10.0.0.1"))
        self.assertFalse(store.is_authorized("10.0.0.2"))
        self.assertEqual(len(store), 1)

    def test_concurrent_authorizations(self):
        store = SessionStore()
        threads = [
            threading.Thread(target=store.authorize, args=(f"10.0.0.{index}",))
            for index in range(50)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(store), 50)


class AuthorizationGateTests(unittest.TestCase):
    def test_disabled_gate_allows_everyone(self):
        gate = AuthorizationGate(None, False)
        self.assertIs(gate.admit("10.0.0.1"), AuthDecision.ALLOWED)
        self.assertEqual(len(gate.store), 0)

    def test_enabled_gate_requires_password(self):
        with self.assertRaises(ValueError):
            AuthorizationGate("", True)

    def test_decisions(self):
        gate = AuthorizationGate("s3cret", True)
        self.assertIs(gate.admit("10.0.0.1"), AuthDecision.REQUIRED)
        with self.assertLogs("accio.security", level="WARNING"):
            self.assertIs(gate.admit("10.0.0.1", "wrong"), AuthDecision.FAILED)
        self.assertFalse(gate.store.is_authorized("10.0.0.1"))
        self.assertIs(gate.admit("10.0.0.1", "s3cret"), AuthDecision.ALLOWED)

    def test_authorized_ip_is_remembered(self):
        gate = AuthorizationGate("s3cret", True)
        gate.admit("10.0.0.1", "s3cret")
        self.assertIs(gate.admit("10.0.0.1"), AuthDecision.ALLOWED)
        self.assertIs(gate.admit("10.0.0.1", "anything"), AuthDecision.ALLOWED)
        self.assertIs(gate.admit("10.0.0.2"), AuthDecision.REQUIRED)

    def test_shared_store(self):
        store = SessionStore()
        store.authorize("192.168.1.5")
        gate = AuthorizationGate("pw", True, store=store)
        self.assertIs(gate.admit("192.168.1.5"), AuthDecision.ALLOWED)


class GeneratePasswordTests(unittest.TestCase):
    def test_passwords_are_random_and_url_safe(self):
        first, second = generate_password(), generate_password()
        self.assertNotEqual(first, second)
        self.assertEqual(len(first), 12)
        self.assertRegex(first, r"^[A-Za-z0-9_-]+$")


if __name__ == "__main__":
    unittest.main()
