from bson.objectid import ObjectId

from security import create_token


class Outbox:
    """Mailer that keeps messages in memory."""

    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)

    @property
    def subjects(self):
        return [m["Subject"] for m in self.messages]


class BrokenMailer:
    def send(self, message):
        raise ConnectionRefusedError("smtp down")


def auth_headers(user):
    token = create_token({"id": user["id"], "email": user["email"], "role": user.get("role", "user")})
    return {"Authorization": f"Bearer {token}"}


def stock_of(store, product_id):
    return store["product"].find_one({"_id": ObjectId(product_id)})["stock"]
