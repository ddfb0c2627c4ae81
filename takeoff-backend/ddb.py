# ddb.py
# DynamoDB single-table repository: daily records and "report viewed" markers

import datetime as dt
import os
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel

_DDB_TABLE = os.environ.get("DDB_TABLE", "takeoff_log")
ddb = boto3.resource("dynamodb", region_name=os.environ.get("AWS_REGION", "us-west-2"))
_table = ddb.Table(_DDB_TABLE)

PARTITION_FMT = "USER#{}"
DAY_PREFIX = "DAY#"
VIEWED_PREFIX = "VIEWED#"


class ReportViewed(BaseModel):
    sub: str
    report_type: str
    period_key: str
    viewed_at: Optional[str] = None


def _day_key(day: dt.date) -> str:
    return f"{DAY_PREFIX}{day.isoformat()}"


def _viewed_key(report_type: str, period_key: str) -> str:
    return f"{VIEWED_PREFIX}{report_type}#{period_key}"


def _query_all(**kwargs) -> list:
    items = []
    while True:
        r = _table.query(**kwargs)
        items.extend(r.get("Items", []))
        last = r.get("LastEvaluatedKey")
        if not last:
            return items
        kwargs["ExclusiveStartKey"] = last


# --------- Daily records ---------
def put_record(sub: str, day: dt.date, count: int):
    _table.put_item(
        Item={
            "PK": PARTITION_FMT.format(sub),
            "SK": _day_key(day),
            "date": day.isoformat(),
            "count": int(count),
            "updated_at": dt.datetime.utcnow().isoformat(),
        }
    )


def delete_record(sub: str, day: dt.date):
    _table.delete_item(Key={"PK": PARTITION_FMT.format(sub), "SK": _day_key(day)})


def get_records(sub: str, start: Optional[dt.date] = None, end: Optional[dt.date] = None) -> Dict[dt.date, int]:
    """Range scan of a user's days (inclusive); both bounds open when omitted."""
    names = {"#pk": "PK", "#sk": "SK"}
    if start is None and end is None:
        items = _query_all(
            KeyConditionExpression="#pk = :pk AND begins_with(#sk, :skprefix)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues={":pk": PARTITION_FMT.format(sub), ":skprefix": DAY_PREFIX},
        )
    else:
        lo = _day_key(start) if start else DAY_PREFIX
        hi = _day_key(end) if end else DAY_PREFIX + "9999-12-31"
        items = _query_all(
            KeyConditionExpression="#pk = :pk AND #sk BETWEEN :lo AND :hi",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues={":pk": PARTITION_FMT.format(sub), ":lo": lo, ":hi": hi},
        )
    # numbers come back as Decimal
    return {dt.date.fromisoformat(i["date"]): int(i["count"]) for i in items}


# --------- Report viewed markers ---------
def mark_viewed(m: ReportViewed):
    item = {
        "PK": PARTITION_FMT.format(m.sub),
        "SK": _viewed_key(m.report_type, m.period_key),
        **{k: v for k, v in m.model_dump().items() if v is not None},
    }
    try:
        _table.put_item(Item=item, ConditionExpression="attribute_not_exists(SK)")
    except ClientError as e:
        # already marked; first write wins
        if e.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
            raise


def is_viewed(sub: str, report_type: str, period_key: str) -> bool:
    r = _table.get_item(Key={"PK": PARTITION_FMT.format(sub), "SK": _viewed_key(report_type, period_key)})
    return "Item" in r
