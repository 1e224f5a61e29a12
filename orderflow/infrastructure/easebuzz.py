import hashlib
import hmac
import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EasebuzzWebhookPayload(BaseModel):
    """Form fields posted by Easebuzz to the payment webhook."""

    txnid: str
    easepayid: str
    status: str
    udf1: str  # carries our order id
    hash: str = ""
    key: str = ""
    amount: str = ""
    productinfo: str = ""
    firstname: str = ""
    email: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""
    udf6: str = ""
    udf7: str = ""
    udf8: str = ""
    udf9: str = ""
    udf10: str = ""
    mode: str = ""
    error_Message: str = ""

    model_config = {"extra": "ignore"}

    @property
    def order_id(self) -> str:
        return self.udf1


class EasebuzzSignatureVerifier:
    """Checks the reverse hash Easebuzz attaches to every transaction response.

    sha512(salt|status|firstname|email|udf10|...|udf1|productinfo|amount|txnid|key)
    """

    def __init__(self, merchant_key: str, salt: str):
        self._merchant_key = merchant_key or ""
        self._salt = salt or ""

    def expected_hash(self, payload: EasebuzzWebhookPayload) -> str:
        fields = [
            self._salt,
            payload.status,
            payload.firstname,
            payload.email,
            payload.udf10,
            payload.udf9,
            payload.udf8,
            payload.udf7,
            payload.udf6,
            payload.udf5,
            payload.udf4,
            payload.udf3,
            payload.udf2,
            payload.udf1,
            payload.productinfo,
            payload.amount,
            payload.txnid,
            payload.key,
        ]
        return hashlib.sha512("|".join(fields).encode("utf-8")).hexdigest()

    def verify(self, payload: EasebuzzWebhookPayload) -> bool:
        if not self._salt or not self._merchant_key:
            logger.error("Easebuzz credentials are not configured")
            return False
        if not payload.hash:
            return False
        if not hmac.compare_digest(
            payload.key.encode("utf-8"), self._merchant_key.encode("utf-8")
        ):
            return False

        return hmac.compare_digest(
            payload.hash.lower().encode("utf-8"),
            self.expected_hash(payload).encode("utf-8"),
        )
