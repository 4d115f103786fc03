import unittest
from unittest.mock import Mock

from relay.errors import EmailTaken, InvalidCredentials, InvalidToken, NotFound
from relay.identity import IdentityStore
from relay.models import DEFAULT_COLOR, DEFAULT_THEME

from support import FAST_HASHER


class TestIdentityStore(unittest.TestCase):

    def setUp(self):
        self.store = IdentityStore(hasher=FAST_HASHER)
        self.user = self.store.create_user("a@x.com", "p1", "Alice")

    def test_create_user_hashes_and_issues_token(self):
        self.assertNotEqual(self.user.credential_hash, "p1")
        self.assertTrue(self.user.token)
        self.assertIs(self.store.resolve_by_token(self.user.token), self.user)

    def test_email_uniqueness_is_case_insensitive(self):
        with self.assertRaises(EmailTaken):
            self.store.create_user("A@X.COM", "other")

    def test_default_profile_fields(self):
        bob = self.store.create_user("bob@example.org", "pw")
        self.assertEqual(bob.display_name, "bob")
        self.assertEqual(bob.color, DEFAULT_COLOR)
        self.assertEqual(bob.theme, DEFAULT_THEME)
        self.assertIsNone(bob.avatar_url)

    def test_login_rotates_token_and_invalidates_previous(self):
        signup_token = self.user.token
        user, token = self.store.authenticate("A@x.com", "p1")
        self.assertIs(user, self.user)
        self.assertNotEqual(token, signup_token)
        with self.assertRaises(InvalidToken):
            self.store.resolve_by_token(signup_token)

        _, newer = self.store.authenticate("a@x.com", "p1")
        with self.assertRaises(InvalidToken):
            self.store.resolve_by_token(token)
        self.assertIs(self.store.resolve_by_token(newer), self.user)

    def test_bad_credentials(self):
        with self.assertRaises(InvalidCredentials):
            self.store.authenticate("a@x.com", "wrong")
        with self.assertRaises(InvalidCredentials):
            self.store.authenticate("nobody@x.com", "p1")
        # a failed login must not rotate the token
        self.assertIs(self.store.resolve_by_token(self.user.token), self.user)

    def test_forged_tokens_never_resolve(self):
        for token in (None, "", "forged", 42, {"token": self.user.token}):
            with self.assertRaises(InvalidToken):
                self.store.resolve_by_token(token)

    def test_update_profile_is_partial(self):
        self.store.update_profile(self.user.user_id, avatar_url="/uploads/a.png", color="#000000")
        self.store.update_profile(self.user.user_id, theme="light")
        self.assertEqual(self.user.display_name, "Alice")
        self.assertEqual(self.user.avatar_url, "/uploads/a.png")
        self.assertEqual(self.user.color, "#000000")
        self.assertEqual(self.user.theme, "light")

    def test_update_profile_can_clear_avatar(self):
        self.store.update_profile(self.user.user_id, avatar_url="/uploads/a.png")
        self.store.update_profile(self.user.user_id, avatar_url=None)
        self.assertIsNone(self.user.avatar_url)

    def test_update_profile_notifies_listeners(self):
        listener = Mock()
        self.store.add_profile_listener(listener)
        self.store.update_profile(self.user.user_id, display_name="Al")
        listener.assert_called_once_with(self.user)

    def test_find_by_email_and_get(self):
        self.assertIs(self.store.find_by_email("A@X.com"), self.user)
        with self.assertRaises(NotFound):
            self.store.find_by_email("missing@x.com")
        with self.assertRaises(NotFound):
            self.store.get("no-such-id")

    def test_records_reload(self):
        self.store.update_profile(self.user.user_id, display_name="Al")
        reloaded = IdentityStore(
            [type(self.user).from_record(r) for r in self.store.to_records().values()],
            hasher=FAST_HASHER,
        )
        user = reloaded.resolve_by_token(self.user.token)
        self.assertEqual(user.display_name, "Al")
        self.assertEqual(reloaded.authenticate("a@x.com", "p1")[0].user_id, self.user.user_id)


if __name__ == "__main__":
    unittest.main()
