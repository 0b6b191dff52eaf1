"""
Artifact storage for job inputs, intermediates and results.

Two backends share one interface:
- EphemeralArtifactStore keeps only the final Markdown, on the in-process Job.
- S3ArtifactStore keeps everything under jobs/<job_id>/ and survives restarts.

The backend is chosen once, in create_artifact_store().
"""

import abc
import json
import time
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mediascribe.core.constants import (
    ARTIFACT_ROOT, ARTIFACT_CLEANED, S3_DELETE_BATCH,
)
from mediascribe.core.error_codes import ArtifactNotFoundError

logger = logging.getLogger(__name__)


def job_prefix(job_id: str) -> str:
    return f"{ARTIFACT_ROOT}{job_id}/"


def job_key(job_id: str, name: str) -> str:
    return f"{job_prefix(job_id)}{name}"


def _to_bytes(body) -> bytes:
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    return str(body).encode('utf-8')


class ArtifactStore(abc.ABC):
    """Storage capability shared by both backends."""

    durable = False

    @abc.abstractmethod
    def put(self, job_id: str, name: str, body, content_type: str = "application/octet-stream"):
        ...

    @abc.abstractmethod
    def get_text(self, job_id: str, name: str) -> str:
        """Raises ArtifactNotFoundError if the artifact is absent."""

    def get_json(self, job_id: str, name: str):
        """Parsed JSON, or None if the artifact is not valid JSON."""
        text = self.get_text(job_id, name)
        try:
            return json.loads(text)
        except ValueError:
            logger.warning("Artifact %s for job %s is not valid JSON", name, job_id)
            return None

    @abc.abstractmethod
    def exists(self, job_id: str, name: str) -> bool:
        ...

    @abc.abstractmethod
    def list_job_ids(self) -> set[str]:
        ...

    @abc.abstractmethod
    def delete_prefix(self, job_id: str) -> int:
        """Delete every artifact of a job. Returns the count deleted; idempotent."""


class EphemeralArtifactStore(ArtifactStore):
    """
    Process-local store backed by Job.result in the registry.
    Nothing is written here: the cleaned Markdown reaches Job.result with
    the job's transition to completed, and every other artifact is dropped.
    """

    durable = False

    def __init__(self, registry):
        self.registry = registry

    def put(self, job_id: str, name: str, body, content_type: str = "application/octet-stream"):
        pass

    def get_text(self, job_id: str, name: str) -> str:
        job = self.registry.get(job_id)
        if name != ARTIFACT_CLEANED or job is None or job.result is None:
            raise ArtifactNotFoundError(f"{name} not found for job {job_id}")
        return job.result

    def exists(self, job_id: str, name: str) -> bool:
        if name != ARTIFACT_CLEANED:
            return False
        job = self.registry.get(job_id)
        return job is not None and job.result is not None

    def list_job_ids(self) -> set[str]:
        return self.registry.ids()

    def delete_prefix(self, job_id: str) -> int:
        # The result lives on the Job; dropping the registry entry removes it.
        return 1 if self.exists(job_id, ARTIFACT_CLEANED) else 0


class S3ArtifactStore(ArtifactStore):
    """Durable store: one prefix per job in an S3 bucket."""

    durable = True

    def __init__(self, bucket: str, client=None, region: str | None = None,
                 access_key_id: str | None = None, secret_access_key: str | None = None):
        self.bucket = bucket
        self.client = client or make_s3_client(region, access_key_id, secret_access_key)

    def put(self, job_id: str, name: str, body, content_type: str = "application/octet-stream"):
        key = job_key(job_id, name)
        self.client.put_object(
            Bucket=self.bucket, Key=key, Body=_to_bytes(body), ContentType=content_type,
        )
        logger.debug("Stored s3://%s/%s", self.bucket, key)

    def get_text(self, job_id: str, name: str) -> str:
        key = job_key(job_id, name)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code in ('NoSuchKey', '404', 'NotFound'):
                raise ArtifactNotFoundError(f"{name} not found for job {job_id}")
            raise
        return resp['Body'].read().decode('utf-8')

    def exists(self, job_id: str, name: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=job_key(job_id, name))
            return True
        except ClientError:
            return False

    def _list_keys(self, prefix: str) -> list[str]:
        keys = []
        paginator = self.client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj['Key'] for obj in page.get('Contents', []))
        return keys

    def list_job_ids(self) -> set[str]:
        job_ids = set()
        for key in self._list_keys(ARTIFACT_ROOT):
            parts = key.split('/')
            if len(parts) >= 2 and parts[0] == ARTIFACT_ROOT.rstrip('/') and parts[1]:
                job_ids.add(parts[1])
        return job_ids

    def delete_prefix(self, job_id: str) -> int:
        keys = self._list_keys(job_prefix(job_id))
        if not keys:
            return 0

        deleted = 0
        for i in range(0, len(keys), S3_DELETE_BATCH):
            batch = [{'Key': k} for k in keys[i:i + S3_DELETE_BATCH]]
            resp = self.client.delete_objects(
                Bucket=self.bucket, Delete={'Objects': batch, 'Quiet': True},
            )
            errors = resp.get('Errors') or []
            for err in errors:
                logger.warning("Failed to delete %s: %s", err.get('Key'), err.get('Message'))
            deleted += len(batch) - len(errors)

        logger.info("Deleted %d artifacts for job %s", deleted, job_id)
        return deleted

    def test_connection(self, write: bool = False) -> dict:
        """Check the bucket is reachable and optionally writable."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            write_ok = False
            if write:
                key = f"health/connection-test-{int(time.time() * 1000)}.txt"
                self.client.put_object(Bucket=self.bucket, Key=key, Body=b'ok',
                                       ContentType='text/plain')
                self.client.delete_objects(
                    Bucket=self.bucket, Delete={'Objects': [{'Key': key}], 'Quiet': True},
                )
                write_ok = True
            return {'ok': True, 'write_ok': write_ok}
        except (ClientError, BotoCoreError) as e:
            return {'ok': False, 'error': str(e)}


def make_s3_client(region: str | None = None, access_key_id: str | None = None,
                   secret_access_key: str | None = None):
    """boto3 S3 client; falls back to the default credential chain."""
    kwargs = {'region_name': region or None}
    if access_key_id and secret_access_key:
        kwargs['aws_access_key_id'] = access_key_id
        kwargs['aws_secret_access_key'] = secret_access_key
    return boto3.client('s3', **kwargs)


def create_artifact_store(config, registry, s3_client=None) -> ArtifactStore:
    """Pick the backend once at start-up: S3 when a bucket is configured."""
    if config.s3_bucket:
        logger.info("Using durable S3 artifact store (bucket=%s)", config.s3_bucket)
        return S3ArtifactStore(
            config.s3_bucket,
            client=s3_client,
            region=config.aws_region,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
        )

    logger.info("No S3 bucket configured — using ephemeral in-process store")
    return EphemeralArtifactStore(registry)
