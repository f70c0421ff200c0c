PASSWORD = "secret123"


def auth(token):
    return {"Authorization": f"Bearer {token}"}
