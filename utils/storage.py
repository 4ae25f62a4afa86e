import os
from typing import Optional
from botocore.exceptions import ClientError

from core.config import s3, R2_BUCKET, STATIC_DIR, logger


class ObjectStorage:
    """R2 bucket when credentials are configured, local static/ directory otherwise.

    Passed explicitly to the side-effect handlers so tests can point it at a
    temporary directory instead of patching module state.
    """

    def __init__(self, s3_resource=None, bucket: str = "", static_dir: str = STATIC_DIR):
        self.s3 = s3_resource
        self.bucket = bucket
        self.static_dir = static_dir

    @property
    def is_remote(self) -> bool:
        return bool(self.s3 and self.bucket)

    def upload_bytes(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        if not self.is_remote:
            local_path = os.path.join(self.static_dir, key)
            os.makedirs(os.path.dirname(local_path), exist_ok=True)
            with open(local_path, "wb") as f:
                f.write(data)
            logger.info(f"Saved locally: {local_path}")
            return f"/static/{key}"

        bucket = self.s3.Bucket(self.bucket)
        bucket.put_object(Key=key, Body=data, ContentType=content_type, ACL="private")

        try:
            url = self.s3.meta.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=60 * 60,
            )
            if url:
                return url
        except Exception as ex:
            logger.warning(f"presigned url generation failed for {key}: {ex}")
        return f"/static/{key}"

    def read_bytes_key(self, key: str) -> Optional[bytes]:
        try:
            if self.is_remote:
                obj = self.s3.Object(self.bucket, key)
                try:
                    return obj.get()["Body"].read()
                except ClientError as ce:
                    if ce.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                        return None
                    raise
            path = os.path.join(self.static_dir, key)
            if not os.path.isfile(path):
                return None
            with open(path, "rb") as f:
                return f.read()
        except Exception as ex:
            logger.warning(f"read_bytes_key failed for {key}: {ex}")
            return None


def get_storage() -> ObjectStorage:
    return ObjectStorage(s3_resource=s3, bucket=R2_BUCKET, static_dir=STATIC_DIR)
