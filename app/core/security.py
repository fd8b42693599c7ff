from jose import jwt
from app.core.config import JWT_SECRET

# tokens are issued by the account service; this API only verifies them
ALGO = "HS256"


def decode_token(token: str) -> int:
    payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGO])
    return int(payload["sub"])
