import hmac
from functools import wraps
from jose import jwt, JWTError
from fastapi import Request, HTTPException, status
from core.base_database import BaseDatabase
from core import config
from core.logger import Logger

logger = Logger(__name__)

def _request_from(args, kwargs) -> Request:
    request = kwargs.get("request") or next((a for a in args if isinstance(a, Request)), None)
    if not request:
        raise RuntimeError("Request object not found. Ensure route includes 'request: Request'.")
    return request

async def get_seller_from_token_data(token_data: dict):
    """Retrieve the seller document referenced by a decoded JWT."""
    seller_id = token_data.get("seller_id")
    if not seller_id:
        return None
    sellers_collection = BaseDatabase.mongodb.get_collection("sellers")
    return await sellers_collection.find_one({"_id": str(seller_id)})

def auth_required(f):
    """
    Decorator for routes that require a seller bearer token.
    Attaches the seller document to `request.state.seller`.

    Usage:
        @get("/")
        @auth_required
        async def index(self, request: Request):
            ...
    """
    @wraps(f)
    async def wrapper(*args, **kwargs):
        request = _request_from(args, kwargs)

        # If middleware already attached the seller, use it
        if getattr(request.state, "seller", None):
            return await f(*args, **kwargs)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            logger.warning("Unauthorized request (missing token)")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        token = auth_header[len("Bearer "):]
        try:
            payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.ALGORITHM])
        except JWTError as e:
            logger.warning(f"Invalid token: {e}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

        seller = await get_seller_from_token_data(payload)
        if not seller:
            logger.warning("Unauthorized request (unknown seller)")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        request.state.seller = seller
        return await f(*args, **kwargs)
    return wrapper

def internal_key_required(f):
    """
    Decorator for service-to-service routes. Expects `X-Internal-Key` to match
    INTERNAL_API_KEY; the route is closed when no key is configured.
    """
    @wraps(f)
    async def wrapper(*args, **kwargs):
        request = _request_from(args, kwargs)
        provided = request.headers.get("X-Internal-Key", "")
        if not config.INTERNAL_API_KEY or not hmac.compare_digest(provided, config.INTERNAL_API_KEY):
            logger.warning("Unauthorized internal request")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        return await f(*args, **kwargs)
    return wrapper
