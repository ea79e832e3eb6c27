"""Tests for owner-managed site data: tags, settings and announcements."""

from store import FailureKind


class TestTags:

    def test_owner_adds_and_removes_tag(self, store, owner):
        assert store.add_tag(owner.id, "社团") is True
        assert store.get_tags()[-1] == "社团"
        assert store.remove_tag(owner.id, "社团") is True
        assert "社团" not in store.get_tags()

    def test_duplicate_or_blank_tag(self, store, owner):
        assert store.add_tag(owner.id, "其他").kind == FailureKind.INVALID_STATE
        assert store.add_tag(owner.id, "  ").kind == FailureKind.INVALID_STATE

    def test_remove_missing_tag(self, store, owner):
        assert store.remove_tag(owner.id, "nope").kind == FailureKind.NOT_FOUND

    def test_admin_cannot_manage_tags(self, store, admin):
        assert store.add_tag(admin.id, "社团").kind == FailureKind.UNAUTHORIZED
        assert store.remove_tag(admin.id, "其他").kind == FailureKind.UNAUTHORIZED
        assert "其他" in store.get_tags()

    def test_removing_tag_leaves_posts_alone(self, store, owner, make_user, make_post):
        alice = make_user("alice")
        post = make_post(alice, tag="八卦")
        store.remove_tag(owner.id, "八卦")
        assert store.get_post_by_id(post.id).tag == "八卦"
        assert store.create_post(alice.id, "t", "c", "八卦").kind == FailureKind.INVALID_STATE


class TestSettings:

    def test_owner_updates_settings(self, store, owner):
        updated = store.update_settings(owner.id, enrollment_years=[2024, 2025, 2026])
        assert updated.enrollment_years == [2024, 2025, 2026]
        assert store.get_settings().class_numbers == list(range(1, 26))

    def test_admin_cannot_update_settings(self, store, admin):
        assert store.update_settings(admin.id, allow_registration=False).kind == FailureKind.UNAUTHORIZED
        assert store.get_settings().allow_registration is True

    def test_invalid_settings_change_is_refused(self, store, owner):
        result = store.update_settings(owner.id, enrollment_years=None)
        assert not result
        assert result.kind == FailureKind.INVALID_STATE
        assert store.get_settings().enrollment_years == [2023, 2024, 2025]

    def test_new_years_open_registration(self, store, owner):
        assert not store.register("kid", "Kid", 2026, 1, "secret123")
        store.update_settings(owner.id, enrollment_years=[2026])
        assert store.register("kid", "Kid", 2026, 1, "secret123")


class TestAnnouncements:

    def test_create_list_and_deactivate(self, store, owner, clock):
        first = store.create_announcement(owner.id, "Exam week", "Good luck")
        second = store.create_announcement(owner.id, "Sports day", "Friday", is_active=False)
        assert first.created_by == owner.id
        assert first.created_by_name == owner.nickname
        assert first.created_at == clock.now
        assert [a.id for a in store.get_announcements()] == [second.id, first.id]
        assert [a.id for a in store.get_active_announcements()] == [first.id]

        updated = store.update_announcement(first.id, is_active=False)
        assert updated.is_active is False
        assert store.get_active_announcements() == []

    def test_create_requires_existing_actor(self, store):
        assert store.create_announcement("user_missing", "t", "c").kind == FailureKind.NOT_FOUND

    def test_delete(self, store, owner):
        announcement = store.create_announcement(owner.id, "t", "c")
        assert store.delete_announcement(announcement.id) is True
        assert store.get_announcements() == []
        assert store.delete_announcement(announcement.id).kind == FailureKind.NOT_FOUND

    def test_update_missing(self, store):
        assert store.update_announcement("announcement_missing", title="x").kind == FailureKind.NOT_FOUND

    def test_invalid_update_is_refused(self, store, owner):
        announcement = store.create_announcement(owner.id, "Exam week", "Good luck")
        result = store.update_announcement(announcement.id, title=None)
        assert result.kind == FailureKind.INVALID_STATE
        assert store.get_announcements()[0].title == "Exam week"
