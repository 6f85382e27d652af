import re
from io import BytesIO

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from crystal_ball.modules.object_storage import (
    MemoryObjectStore,
    ObjectNotFoundError,
    S3ObjectStore,
    character_prefix,
    key_for_character_sheet,
    key_for_document,
)


def test_key_layout():
    key = key_for_character_sheet("u1", "c1", 3, "../My Sheet.pdf")
    assert re.fullmatch(r"characters/u1/c1/level-3/\d+-My%20Sheet\.pdf", key)
    assert key.startswith(character_prefix("u1", "c1"))
    assert character_prefix("u1", "c1") == "characters/u1/c1/"
    assert re.fullmatch(r"documents/\d+-rules\.pdf", key_for_document("rules.pdf"))
    assert key_for_document("").endswith("-file")


def test_memory_store_round_trip():
    store = MemoryObjectStore()
    store.put_bytes("characters/u/c/level-1/a.pdf", b"abc" * 10, "application/pdf")
    store.put_bytes("characters/u/c/level-2/b.png", b"png")

    obj = store.get("characters/u/c/level-1/a.pdf")
    assert obj.size == 30
    assert obj.content_type == "application/pdf"
    assert b"".join(obj.iter_chunks(chunk_size=7)) == b"abc" * 10
    assert store.get("characters/u/c/level-2/b.png").content_type == "image/png"

    assert store.delete_prefix("characters/u/c/") == 2
    assert store.list_keys("characters/") == []
    with pytest.raises(ObjectNotFoundError):
        store.get("characters/u/c/level-1/a.pdf")


@pytest.fixture
def s3_stub():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )
    with Stubber(client) as stubber:
        yield S3ObjectStore(
            endpoint="",
            bucket="sheets",
            access_key_id="test",
            secret_access_key="test",
            client=client,
        ), stubber
        stubber.assert_no_pending_responses()


def test_s3_get_maps_missing_key(s3_stub):
    store, stubber = s3_stub
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    with pytest.raises(ObjectNotFoundError):
        store.get("documents/missing.pdf")


def test_s3_get_returns_body_and_size(s3_stub):
    store, stubber = s3_stub
    stubber.add_response(
        "get_object",
        {
            "Body": StreamingBody(BytesIO(b"%PDF"), 4),
            "ContentLength": 4,
            "ContentType": "application/pdf",
        },
    )
    obj = store.get("documents/a.pdf")
    assert obj.size == 4
    assert obj.content_type == "application/pdf"
    assert obj.read() == b"%PDF"


def test_s3_ensure_bucket_creates_missing_bucket(s3_stub):
    store, stubber = s3_stub
    stubber.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
    stubber.add_response("create_bucket", {}, {"Bucket": "sheets"})
    store.ensure_bucket()


def test_s3_delete_prefix_batches_keys(s3_stub):
    store, stubber = s3_stub
    stubber.add_response(
        "list_objects_v2",
        {"Contents": [{"Key": "characters/u/c/a.pdf"}, {"Key": "characters/u/c/b.pdf"}], "IsTruncated": False},
    )
    stubber.add_response("delete_objects", {})
    assert store.delete_prefix("characters/u/c/") == 2
