"""DynamoDB backend implementing IEntityStore.

One table per entity, keyed ``PK``/``SK`` like the rest of the platform's
tables. Child lookups go through global secondary indexes:

    stepflow-steps      job_id + order            (job-steps-index)
    stepflow-uploads    step_id + sequence        (step-uploads-index)
    stepflow-reviews    upload_id + reviewed_at   (upload-reviews-index)
    stepflow-documents  document_set_id + order   (set-documents-index)

Multi-item writes use ``TransactWriteItems`` so a job and its steps, a
document set and its documents, or a ``WorkflowChange``, land all-or-nothing.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from stepflow.core.exceptions import ConcurrentUpdateError, NotFoundError, StorageError
from stepflow.models.changes import WorkflowChange
from stepflow.models.entities import (
    Document,
    DocumentSet,
    Job,
    Review,
    Role,
    Step,
    Upload,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

USERS_TABLE = "stepflow-users"
JOBS_TABLE = "stepflow-jobs"
STEPS_TABLE = "stepflow-steps"
UPLOADS_TABLE = "stepflow-uploads"
REVIEWS_TABLE = "stepflow-reviews"
DOCUMENT_SETS_TABLE = "stepflow-document-sets"
DOCUMENTS_TABLE = "stepflow-documents"

JOB_STEPS_INDEX = "job-steps-index"
STEP_UPLOADS_INDEX = "step-uploads-index"
UPLOAD_REVIEWS_INDEX = "upload-reviews-index"
SET_DOCUMENTS_INDEX = "set-documents-index"

BATCH_GET_LIMIT = 100

_serializer = TypeSerializer()


def _decode_decimals(item: dict[str, Any]) -> dict[str, Any]:
    """Convert Decimal values in a DynamoDB item to int/float."""
    out: dict[str, Any] = {}
    for k, v in item.items():
        if isinstance(v, Decimal):
            out[k] = int(v) if v == int(v) else float(v)
        elif isinstance(v, dict):
            out[k] = _decode_decimals(v)
        else:
            out[k] = v
    return out


def _item(model: Any, prefix: str) -> dict[str, Any]:
    """Model -> DynamoDB item with keys; ``None`` attributes are left out."""
    data = {k: v for k, v in model.model_dump(mode="json").items() if v is not None}
    data["PK"] = f"{prefix}#{model.id}"
    data["SK"] = "META"
    return data


def _key(prefix: str, entity_id: str) -> dict[str, str]:
    return {"PK": f"{prefix}#{entity_id}", "SK": "META"}


def _wire(value: dict[str, Any]) -> dict[str, Any]:
    """Native attribute map -> low-level client wire format."""
    return {k: _serializer.serialize(v) for k, v in value.items()}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoDBEntityStore:
    """Production IEntityStore backed by DynamoDB.

    Every botocore failure surfaces as StorageError (or one of its
    subclasses), so callers never see raw client errors.
    """

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        self._region = region
        self._endpoint_url = endpoint_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)
        self._client = boto3.client("dynamodb", **kwargs)

    def _name(self, base: str) -> str:
        return f"{base}{self._table_suffix}"

    def _table(self, base: str):
        return self._ddb.Table(self._name(base))

    def _get_item(self, table_base: str, prefix: str, entity_id: str) -> dict[str, Any] | None:
        """Get a single item by id. Returns None if not found."""
        try:
            resp = self._table(table_base).get_item(
                Key=_key(prefix, entity_id), ConsistentRead=True,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB read failed for {prefix}#{entity_id}: {exc}") from exc
        item = resp.get("Item")
        return _decode_decimals(item) if item else None

    def _batch_get(self, table_base: str, prefix: str, ids: list[str]) -> list[dict[str, Any]]:
        """Strongly consistent reads of many items; missing ids are skipped."""
        name = self._name(table_base)
        items: list[dict[str, Any]] = []
        for start in range(0, len(ids), BATCH_GET_LIMIT):
            request: dict[str, Any] = {
                name: {
                    "Keys": [_key(prefix, i) for i in ids[start:start + BATCH_GET_LIMIT]],
                    "ConsistentRead": True,
                }
            }
            while request:
                try:
                    resp = self._ddb.batch_get_item(RequestItems=request)
                except (BotoCoreError, ClientError) as exc:
                    raise StorageError(f"DynamoDB batch read failed on {name}: {exc}") from exc
                items.extend(_decode_decimals(i) for i in resp.get("Responses", {}).get(name, []))
                request = resp.get("UnprocessedKeys") or {}
        return items

    def _query_index(self, table_base: str, index: str, condition: Any) -> list[dict[str, Any]]:
        """Query a GSI in ascending sort-key order, following pagination."""
        tbl = self._table(table_base)
        kwargs: dict[str, Any] = {
            "IndexName": index,
            "KeyConditionExpression": condition,
            "ScanIndexForward": True,
        }
        items: list[dict[str, Any]] = []
        while True:
            try:
                resp = tbl.query(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"DynamoDB query failed on {index}: {exc}") from exc
            items.extend(_decode_decimals(i) for i in resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                return items
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]

    def _scan(self, table_base: str, filter_expression: Any = None) -> list[dict[str, Any]]:
        tbl = self._table(table_base)
        kwargs: dict[str, Any] = {}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        items: list[dict[str, Any]] = []
        while True:
            try:
                resp = tbl.scan(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"DynamoDB scan failed on {self._name(table_base)}: {exc}") from exc
            items.extend(_decode_decimals(i) for i in resp.get("Items", []))
            if "LastEvaluatedKey" not in resp:
                return items
            kwargs["ExclusiveStartKey"] = resp["LastEvaluatedKey"]

    def _delete_items(self, table_base: str, prefix: str, ids: list[str]) -> None:
        try:
            with self._table(table_base).batch_writer() as batch:
                for entity_id in ids:
                    batch.delete_item(Key=_key(prefix, entity_id))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB delete failed on {self._name(table_base)}: {exc}") from exc

    def _transact(self, items: list[dict[str, Any]]) -> None:
        self._client.transact_write_items(TransactItems=items)

    def _put_new(self, table_base: str, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "Put": {
                "TableName": self._name(table_base),
                "Item": _wire(item),
                "ConditionExpression": "attribute_not_exists(PK)",
            }
        }

    # ---- users ----

    def get_user(self, user_id: str) -> Optional[User]:
        item = self._get_item(USERS_TABLE, "USER", user_id)
        return User.model_validate(item) if item else None

    def list_users(self) -> list[User]:
        return [User.model_validate(i) for i in self._scan(USERS_TABLE)]

    def put_user(self, user: User) -> User:
        existing = self.get_user(user.id)
        update: dict[str, Any] = {"updated_at": utcnow()}
        if existing is not None:
            update["created_at"] = existing.created_at
        stored = user.model_copy(update=update)
        try:
            self._table(USERS_TABLE).put_item(Item=_item(stored, "USER"))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB write failed for user {user.id!r}: {exc}") from exc
        return stored

    def update_user_role(self, user_id: str, role: Role) -> None:
        try:
            self._table(USERS_TABLE).update_item(
                Key=_key("USER", user_id),
                UpdateExpression="SET #r = :role, updated_at = :now",
                ConditionExpression="attribute_exists(PK)",
                ExpressionAttributeNames={"#r": "role"},
                ExpressionAttributeValues={":role": str(role), ":now": utcnow().isoformat()},
            )
        except ClientError as exc:
            if _error_code(exc) == "ConditionalCheckFailedException":
                raise NotFoundError("User", user_id) from exc
            raise StorageError(f"DynamoDB role update failed for user {user_id!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"DynamoDB role update failed for user {user_id!r}: {exc}") from exc

    # ---- jobs ----

    def create_job(self, job: Job, steps: list[Step]) -> None:
        orders = [s.order for s in steps]
        if len(set(orders)) != len(orders):
            raise StorageError(f"Duplicate step order in job {job.id}")
        items = [self._put_new(JOBS_TABLE, _item(job, "JOB"))]
        items.extend(self._put_new(STEPS_TABLE, _item(s, "STEP")) for s in steps)
        try:
            self._transact(items)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB create failed for job {job.id!r}: {exc}") from exc

    def get_job(self, job_id: str) -> Optional[Job]:
        item = self._get_item(JOBS_TABLE, "JOB", job_id)
        return Job.model_validate(item) if item else None

    def list_jobs(
        self, *, manager_id: str | None = None, worker_id: str | None = None
    ) -> list[Job]:
        condition = None
        if manager_id is not None:
            condition = Attr("manager_id").eq(manager_id)
        if worker_id is not None:
            by_worker = Attr("worker_id").eq(worker_id)
            condition = by_worker if condition is None else condition & by_worker
        return [Job.model_validate(i) for i in self._scan(JOBS_TABLE, condition)]

    def delete_job(self, job_id: str) -> None:
        for step in self.list_steps(job_id):
            self.delete_step(step.id)
        self._delete_items(JOBS_TABLE, "JOB", [job_id])

    # ---- steps ----

    def get_step(self, step_id: str) -> Optional[Step]:
        item = self._get_item(STEPS_TABLE, "STEP", step_id)
        return Step.model_validate(item) if item else None

    def list_steps(self, job_id: str) -> list[Step]:
        # The index only supplies membership; statuses come from consistent reads.
        keys = self._query_index(STEPS_TABLE, JOB_STEPS_INDEX, Key("job_id").eq(job_id))
        items = self._batch_get(STEPS_TABLE, "STEP", [k["id"] for k in keys])
        steps = [Step.model_validate(i) for i in items]
        return sorted(steps, key=lambda s: s.order)

    def delete_step(self, step_id: str) -> None:
        uploads = self.list_uploads(step_id)
        reviews = [r for u in uploads for r in self.list_reviews(u.id)]
        self._delete_items(REVIEWS_TABLE, "REVIEW", [r.id for r in reviews])
        self._delete_items(UPLOADS_TABLE, "UPLOAD", [u.id for u in uploads])
        self._delete_items(STEPS_TABLE, "STEP", [step_id])
        logger.debug(
            "Deleted step %s with %d uploads and %d reviews", step_id, len(uploads), len(reviews)
        )

    # ---- uploads / reviews ----

    def get_upload(self, upload_id: str) -> Optional[Upload]:
        item = self._get_item(UPLOADS_TABLE, "UPLOAD", upload_id)
        return Upload.model_validate(item) if item else None

    def list_uploads(self, step_id: str) -> list[Upload]:
        items = self._query_index(UPLOADS_TABLE, STEP_UPLOADS_INDEX, Key("step_id").eq(step_id))
        return [Upload.model_validate(i) for i in items]

    def list_reviews(self, upload_id: str) -> list[Review]:
        items = self._query_index(
            REVIEWS_TABLE, UPLOAD_REVIEWS_INDEX, Key("upload_id").eq(upload_id)
        )
        return [Review.model_validate(i) for i in items]

    # ---- change sets ----

    def apply_change(self, change: WorkflowChange) -> None:
        now = utcnow().isoformat()
        items: list[dict[str, Any]] = [self._job_update(change, now)]

        stamped = False
        for t in change.transitions:
            sets = ["#s = :target", "updated_at = :now"]
            condition = "attribute_exists(PK) AND job_id = :job AND #s = :expected"
            values: dict[str, Any] = {
                ":target": str(t.target),
                ":expected": str(t.expected),
                ":job": change.job_id,
                ":now": now,
            }
            if change.upload is not None and change.upload.step_id == t.step_id:
                sets.append("latest_upload_id = :upload")
                values[":upload"] = change.upload.id
                stamped = True
            if t.expected_upload_id is not None:
                condition += " AND latest_upload_id = :latest"
                values[":latest"] = t.expected_upload_id
            items.append({
                "Update": {
                    "TableName": self._name(STEPS_TABLE),
                    "Key": _wire(_key("STEP", t.step_id)),
                    "UpdateExpression": "SET " + ", ".join(sets),
                    "ConditionExpression": condition,
                    "ExpressionAttributeNames": {"#s": "status"},
                    "ExpressionAttributeValues": _wire(values),
                }
            })

        if change.upload is not None:
            if not stamped:
                items.append({
                    "Update": {
                        "TableName": self._name(STEPS_TABLE),
                        "Key": _wire(_key("STEP", change.upload.step_id)),
                        "UpdateExpression": "SET latest_upload_id = :upload, updated_at = :now",
                        "ConditionExpression": "attribute_exists(PK) AND job_id = :job",
                        "ExpressionAttributeValues": _wire({
                            ":upload": change.upload.id, ":job": change.job_id, ":now": now,
                        }),
                    }
                })
            items.append(self._put_new(UPLOADS_TABLE, _item(change.upload, "UPLOAD")))
        if change.review is not None:
            items.append(self._put_new(REVIEWS_TABLE, _item(change.review, "REVIEW")))
        if change.deleted_step_id is not None:
            items.append({
                "Delete": {
                    "TableName": self._name(STEPS_TABLE),
                    "Key": _wire(_key("STEP", change.deleted_step_id)),
                    "ConditionExpression": "attribute_exists(PK) AND job_id = :job",
                    "ExpressionAttributeValues": _wire({":job": change.job_id}),
                }
            })

        try:
            self._transact(items)
        except ClientError as exc:
            if _error_code(exc) == "TransactionCanceledException":
                reasons = [
                    r.get("Code", "None") for r in exc.response.get("CancellationReasons", [])
                ]
                raise ConcurrentUpdateError(
                    change.job_id, f"transaction cancelled ({', '.join(reasons) or 'no reason'})"
                ) from exc
            raise StorageError(f"DynamoDB change failed for job {change.job_id!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"DynamoDB change failed for job {change.job_id!r}: {exc}") from exc

    def _job_update(self, change: WorkflowChange, now: str) -> dict[str, Any]:
        """Version bump on the job row, plus the new status when there is one."""
        sets = ["#v = #v + :one", "updated_at = :now"]
        names = {"#v": "version"}
        values: dict[str, Any] = {":one": 1, ":now": now}
        condition = "attribute_exists(PK)"
        if change.job_status is not None:
            sets.append("#s = :status")
            names["#s"] = "status"
            values[":status"] = str(change.job_status)
        if change.expected_version is not None:
            condition += " AND #v = :version"
            values[":version"] = change.expected_version
        return {
            "Update": {
                "TableName": self._name(JOBS_TABLE),
                "Key": _wire(_key("JOB", change.job_id)),
                "UpdateExpression": "SET " + ", ".join(sets),
                "ConditionExpression": condition,
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": _wire(values),
            }
        }

    # ---- document sets ----

    def create_document_set(self, document_set: DocumentSet, documents: list[Document]) -> None:
        items = [self._put_new(DOCUMENT_SETS_TABLE, _item(document_set, "DOCSET"))]
        items.extend(self._put_new(DOCUMENTS_TABLE, _item(d, "DOCUMENT")) for d in documents)
        try:
            self._transact(items)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(
                f"DynamoDB create failed for document set {document_set.id!r}: {exc}"
            ) from exc

    def get_document_set(self, set_id: str) -> Optional[DocumentSet]:
        item = self._get_item(DOCUMENT_SETS_TABLE, "DOCSET", set_id)
        return DocumentSet.model_validate(item) if item else None

    def list_document_sets(self, *, manager_id: str | None = None) -> list[DocumentSet]:
        condition = Attr("manager_id").eq(manager_id) if manager_id is not None else None
        return [DocumentSet.model_validate(i) for i in self._scan(DOCUMENT_SETS_TABLE, condition)]

    def list_documents(self, set_id: str) -> list[Document]:
        items = self._query_index(
            DOCUMENTS_TABLE, SET_DOCUMENTS_INDEX, Key("document_set_id").eq(set_id)
        )
        return [Document.model_validate(i) for i in items]

    def delete_document_set(self, set_id: str) -> None:
        documents = self.list_documents(set_id)
        self._delete_items(DOCUMENTS_TABLE, "DOCUMENT", [d.id for d in documents])
        self._delete_items(DOCUMENT_SETS_TABLE, "DOCSET", [set_id])
