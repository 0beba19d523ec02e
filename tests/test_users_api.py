from conftest import headers_for, make_user
from schemas import Role


def test_admin_lists_users_without_password_hashes(client, db, admin, buyer, seller):
    users = client.get("/api/users", headers=headers_for(admin)).json()
    assert {u["role"] for u in users} == {"admin", "buyer", "seller"}
    assert all("passwordHash" not in u for u in users)

    sellers = client.get("/api/users/role/seller", headers=headers_for(admin)).json()
    assert [u["id"] for u in sellers] == [str(seller["_id"])]
    assert client.get("/api/users/role/wizard", headers=headers_for(admin)).status_code == 400
    assert client.get("/api/users", headers=headers_for(buyer)).status_code == 403


def test_users_see_only_themselves(client, db, buyer, admin):
    other = make_user(db, Role.buyer, username="neighbour")
    assert client.get(f"/api/users/{buyer['_id']}", headers=headers_for(buyer)).json()["username"] == buyer["username"]
    assert client.get(f"/api/users/{other['_id']}", headers=headers_for(buyer)).status_code == 403
    assert client.get(f"/api/users/{other['_id']}", headers=headers_for(admin)).status_code == 200
    assert client.get("/api/users/5f1d7f1d7f1d7f1d7f1d7f1d", headers=headers_for(admin)).status_code == 404


def test_user_cannot_promote_themselves(client, db, buyer):
    resp = client.put(
        f"/api/users/{buyer['_id']}",
        json={"phone": "+91 98000 00000", "role": "admin"},
        headers=headers_for(buyer),
    )
    assert resp.status_code == 200
    assert resp.json()["phone"] == "+91 98000 00000"
    assert resp.json()["role"] == "buyer"


def test_admin_changes_role(client, db, buyer, admin):
    resp = client.put(f"/api/users/{buyer['_id']}", json={"role": "seller"}, headers=headers_for(admin))
    assert resp.json()["role"] == "seller"


def test_email_must_stay_unique(client, db, buyer, seller):
    resp = client.put(f"/api/users/{buyer['_id']}", json={"email": seller["email"]}, headers=headers_for(buyer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "USER_EXISTS"


def test_delete_user(client, db, buyer, admin):
    assert client.delete(f"/api/users/{admin['_id']}", headers=headers_for(admin)).status_code == 403
    assert client.delete(f"/api/users/{buyer['_id']}", headers=headers_for(buyer)).status_code == 403
    assert client.delete(f"/api/users/{buyer['_id']}", headers=headers_for(admin)).status_code == 204
    assert db["user"].count_documents({"_id": buyer["_id"]}) == 0


class TestSellerOnboarding:
    BODY = {
        "personalDetails": {"fullName": "Asha Patil", "phone": "9800000000"},
        "businessDetails": {"businessName": "Patil Organics", "gstNumber": "27ABCDE1234F1Z5"},
    }

    def test_register_makes_buyer_a_pending_seller(self, client, db, buyer):
        resp = client.post("/api/seller/register", json=self.BODY, headers=headers_for(buyer))
        assert resp.status_code == 201
        seller = resp.json()["seller"]
        assert seller["status"] == "pending"
        assert seller["userId"] == str(buyer["_id"])
        assert seller["businessDetails"]["businessName"] == "Patil Organics"
        assert db["user"].find_one({"_id": buyer["_id"]})["role"] == "seller"

        status = client.get("/api/seller/status", headers=headers_for(buyer)).json()
        assert status["status"] == "pending"

    def test_register_twice(self, client, db, buyer):
        client.post("/api/seller/register", json=self.BODY, headers=headers_for(buyer))
        resp = client.post("/api/seller/register", json=self.BODY, headers=headers_for(buyer))
        assert resp.status_code == 409
        assert resp.json()["code"] == "SELLER_EXISTS"

    def test_status_without_profile(self, client, db, buyer):
        assert client.get("/api/seller/status", headers=headers_for(buyer)).status_code == 404

    def test_requires_login(self, client, db):
        assert client.post("/api/seller/register", json=self.BODY).status_code == 401
