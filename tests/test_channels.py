import unittest

from relay.channels import ChannelStore
from relay.customised_types import ChannelType
from relay.errors import EmptyContent, InvalidRequest, NotAuthorized, NotFound
from relay.models import ChannelRef, User

from support import StepClock


def _user(uid):
    return User(user_id=uid, email=f"{uid}@x.com", credential_hash="-", display_name=uid.upper())


class TestRooms(unittest.TestCase):

    def setUp(self):
        self.store = ChannelStore()
        self.owner, self.member, self.outsider = _user("u1"), _user("u2"), _user("u3")

    def test_public_room_has_implicit_membership(self):
        room = self.store.create_room("u1", "general", False)
        self.assertFalse(room.is_private)
        self.assertEqual(room.members, [])
        self.assertTrue(self.store.is_entitled(room.ref, "anyone"))

    def test_private_room_starts_with_owner(self):
        room = self.store.create_room("u1", "secret", True)
        self.assertEqual(room.members, ["u1"])
        self.assertFalse(self.store.is_entitled(room.ref, "u2"))

    def test_room_name_required(self):
        with self.assertRaises(InvalidRequest):
            self.store.create_room("u1", "   ", False)

    def test_invite_is_idempotent(self):
        room = self.store.create_room("u1", "secret", True)
        self.store.invite_to_room(room.room_id, "u1", "u2")
        self.store.invite_to_room(room.room_id, "u1", "u2")
        self.assertEqual(room.members, ["u1", "u2"])

    def test_member_may_invite_outsider_may_not(self):
        room = self.store.create_room("u1", "secret", True)
        self.store.invite_to_room(room.room_id, "u1", "u2")
        self.store.invite_to_room(room.room_id, "u2", "u4")
        with self.assertRaises(NotAuthorized):
            self.store.invite_to_room(room.room_id, "u3", "u3")
        self.assertEqual(room.members, ["u1", "u2", "u4"])

    def test_invite_unknown_room(self):
        with self.assertRaises(NotFound):
            self.store.invite_to_room("missing", "u1", "u2")

    def test_owner_invite_to_public_room_is_noop(self):
        room = self.store.create_room("u1", "general", False)
        self.store.invite_to_room(room.room_id, "u1", "u2")
        self.assertEqual(room.members, [])

    def test_only_owner_may_invite_to_public_room(self):
        room = self.store.create_room("u1", "general", False)
        with self.assertRaises(NotAuthorized):
            self.store.invite_to_room(room.room_id, "u3", "u2")
        self.assertEqual(room.members, [])

    def test_visible_rooms(self):
        public = self.store.create_room("u1", "general", False)
        private = self.store.create_room("u1", "secret", True)
        self.assertEqual({r.room_id for r in self.store.visible_rooms("u1")}, {public.room_id, private.room_id})
        self.assertEqual([r.room_id for r in self.store.visible_rooms("u3")], [public.room_id])


class TestDirectThreads(unittest.TestCase):

    def setUp(self):
        self.store = ChannelStore()

    def test_thread_id_is_order_independent(self):
        ab = self.store.open_or_create_direct_thread("a", "b")
        ba = self.store.open_or_create_direct_thread("b", "a")
        self.assertIs(ab, ba)
        self.assertEqual(ab.thread_id, "a_b")
        self.assertEqual(len(self.store.all_threads()), 1)

    def test_self_thread_rejected(self):
        with self.assertRaises(InvalidRequest):
            self.store.open_or_create_direct_thread("a", "a")

    def test_threads_for(self):
        self.store.open_or_create_direct_thread("a", "b")
        self.store.open_or_create_direct_thread("c", "a")
        self.assertEqual(len(self.store.threads_for("a")), 2)
        self.assertEqual(len(self.store.threads_for("b")), 1)
        self.assertEqual(self.store.threads_for("z"), [])


class TestAppendMessage(unittest.TestCase):

    def setUp(self):
        self.clock = StepClock(1000, 900, 900, 1200)
        self.store = ChannelStore(clock=self.clock)
        self.alice, self.bob, self.carol = _user("alice"), _user("bob"), _user("carol")

    def test_empty_content(self):
        room = self.store.create_room("alice", "general", False)
        with self.assertRaises(EmptyContent):
            self.store.append_message(room.ref, self.alice, text=None, image_url=None)
        with self.assertRaises(EmptyContent):
            self.store.append_message(room.ref, self.alice, text="", image_url="")
        self.assertEqual(room.messages, [])

    def test_image_only_message(self):
        room = self.store.create_room("alice", "general", False)
        msg = self.store.append_message(room.ref, self.alice, image_url="/uploads/cat.png")
        self.assertIsNone(msg.text)
        self.assertEqual(msg.image_url, "/uploads/cat.png")

    def test_public_room_accepts_anyone(self):
        room = self.store.create_room("alice", "general", False)
        msg = self.store.append_message(room.ref, self.bob, text="hi")
        self.assertEqual(msg.author_id, "bob")
        self.assertEqual(msg.display_name, "BOB")

    def test_private_room_rejects_non_member_without_mutation(self):
        room = self.store.create_room("alice", "secret", True)
        with self.assertRaises(NotAuthorized):
            self.store.append_message(room.ref, self.bob, text="let me in")
        self.assertEqual(room.messages, [])
        self.store.invite_to_room(room.room_id, "alice", "bob")
        self.store.append_message(room.ref, self.bob, text="thanks")
        self.assertEqual(len(room.messages), 1)

    def test_direct_thread_participants_only(self):
        thread = self.store.open_or_create_direct_thread("alice", "bob")
        self.store.append_message(thread.ref, self.bob, text="yo")
        with self.assertRaises(NotAuthorized):
            self.store.append_message(thread.ref, self.carol, text="hey")

    def test_unknown_channel(self):
        with self.assertRaises(NotFound):
            self.store.append_message(ChannelRef(ChannelType.ROOM, "nope"), self.alice, text="x")
        with self.assertRaises(NotFound):
            self.store.append_message(ChannelRef(ChannelType.DIRECT_MESSAGE, "a_b"), self.alice, text="x")

    def test_created_at_never_goes_backwards(self):
        room = self.store.create_room("alice", "general", False)
        for i in range(4):
            self.store.append_message(room.ref, self.alice, text=str(i))
        stamps = [m.created_at for m in room.messages]
        self.assertEqual(stamps, [1000, 1000, 1000, 1200])
        self.assertEqual([m.text for m in room.messages], ["0", "1", "2", "3"])
        self.assertEqual(len({m.message_id for m in room.messages}), 4)


if __name__ == "__main__":
    unittest.main()
