import pytest


@pytest.fixture
def admin(store):
    store.add_user("alice", role="admin")
    store.add_user("bob")
    store.add_user("carol")


def test_requires_admin_role(client, store):
    store.add_user("alice")

    assert client.get("/admin/stats").status_code == 403
    assert client.delete("/admin/posts/p1").status_code == 403
    assert "p1" in store.posts


def test_stats(client, store, admin):
    store.insert_like_row("p1", "carol")
    store.add_comment("p1", "Carol", "carol", "hi")
    store.add_post("hidden", is_active=False)

    stats = client.get("/admin/stats").json()

    assert stats == {
        "total_users": 3,
        "new_users_today": 3,
        "total_posts": 1,
        "total_likes": 1,
        "total_comments": 1,
    }


def test_lists_include_inactive_posts(client, store, admin):
    store.add_post("hidden", is_active=False)

    posts = client.get("/admin/posts").json()
    users = client.get("/admin/users").json()

    assert {post["id"] for post in posts} == {"p1", "hidden"}
    assert {user["id"] for user in users} == {"alice", "bob", "carol"}
    assert next(user for user in users if user["id"] == "alice")["role"] == "admin"


def test_deactivate_and_reactivate_user(client, store, admin):
    assert client.post("/admin/users/bob/deactivate").json() == {"id": "bob", "is_active": False}
    assert store.users["bob"]["is_active"] is False

    assert client.post("/admin/users/bob/reactivate").status_code == 200
    assert store.users["bob"]["is_active"] is True

    assert client.post("/admin/users/nobody/deactivate").status_code == 404
    assert client.post("/admin/users/alice/deactivate").status_code == 400


def test_delete_post_removes_its_rows(client, store, admin):
    store.insert_like_row("p1", "carol")
    store.add_comment("p1", "Carol", "carol", "hi")
    store.create_notification("bob", "carol", "like", "carol liked your post", post_id="p1")

    assert client.delete("/admin/posts/p1").status_code == 200

    assert "p1" not in store.posts
    assert store.likes == {} and store.comments == {} and store.notifications == {}
    assert client.delete("/admin/posts/p1").status_code == 404


def test_delete_user_cascades(client, store, admin):
    store.add_post("p2", author_uid="carol")
    store.add_like("p2", "bob")
    store.add_comment("p2", "Bob", "bob", "nice")
    store.add_like("p1", "carol")
    store.create_notification("carol", "bob", "like", "bob liked your post", post_id="p2")

    response = client.delete("/admin/users/bob")

    assert response.status_code == 200
    assert "bob" not in store.users
    assert "p1" not in store.posts
    assert store.posts["p2"]["like_count"] == 0
    assert store.posts["p2"]["comment_count"] == 0
    assert store.likes == {} and store.comments == {} and store.notifications == {}
    assert client.delete("/admin/users/alice").status_code == 400
