# ono/activitypub/activity.py
"""
Outbound ActivityPub envelopes.

Every builder returns a plain JSON-LD dict ready to be serialized and
delivered. Ids of new activities hang off the actor id:

    <actor id>/<verb>/<32 hex chars>

and an Undo reuses the id of the activity it retracts:

    <original id>/undo
"""

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .actor import AS_CONTEXT, Account

PUBLIC = "https://www.w3.org/ns/activitystreams#Public"


def new_guid() -> str:
    """128 random bits, hex encoded."""
    return secrets.token_hex(16)


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def child_id(account: Account, verb: str) -> str:
    return f"{account.id}/{verb}/{new_guid()}"


def object_id(obj: Any) -> Optional[str]:
    """Id of an embedded object or object reference."""
    if isinstance(obj, dict):
        return obj.get("id")
    return obj


def object_type(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        return obj.get("type")
    return None


def _envelope(activity_id: str, activity_type: str, account: Account, obj: Any) -> Dict[str, Any]:
    return {
        "@context": AS_CONTEXT,
        "id": activity_id,
        "type": activity_type,
        "actor": account.id,
        "object": obj,
    }


def build_like(account: Account, post: Dict[str, Any]) -> Dict[str, Any]:
    return _envelope(child_id(account, "likes"), "Like", account, post["id"])


def build_undo_like(account: Account, post: Dict[str, Any], original_id: str) -> Dict[str, Any]:
    return _envelope(f"{original_id}/undo", "Undo", account, {
        "id": original_id,
        "type": "Like",
        "actor": account.id,
        "object": post["id"],
    })


def build_follow(account: Account, recipient_id: str) -> Dict[str, Any]:
    return _envelope(child_id(account, "follows"), "Follow", account, recipient_id)


def build_undo_follow(account: Account, recipient_id: str, original_id: str) -> Dict[str, Any]:
    return _envelope(f"{original_id}/undo", "Undo", account, {
        "id": original_id,
        "type": "Follow",
        "actor": account.id,
        "object": recipient_id,
    })


def build_accept(account: Account, follow_request: Dict[str, Any]) -> Dict[str, Any]:
    return _envelope(child_id(account, "accept"), "Accept", account, follow_request)


def _wrap_object(account: Account, activity_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
    message = _envelope(f"{obj['id']}/activity", activity_type, account, obj)
    message["published"] = obj.get("published")
    message["to"] = obj.get("to", [])
    message["cc"] = obj.get("cc", [])
    return message


def build_create(account: Account, obj: Dict[str, Any]) -> Dict[str, Any]:
    return _wrap_object(account, "Create", obj)


def build_update(account: Account, obj: Dict[str, Any]) -> Dict[str, Any]:
    return _wrap_object(account, "Update", obj)


def build_delete(account: Account, obj_id: str) -> Dict[str, Any]:
    message = _envelope(f"{obj_id}#delete", "Delete", account, {
        "id": obj_id,
        "type": "Tombstone",
    })
    message["to"] = [PUBLIC]
    message["cc"] = [account.followers]
    return message


def boost_recipients(account: Account, primary_recipient_id: str) -> List[str]:
    """Our followers (as the collection reference) plus the post's author."""
    return [account.followers, primary_recipient_id]


def build_announce(account: Account, post: Dict[str, Any], primary_recipient_id: str) -> Dict[str, Any]:
    message = _envelope(child_id(account, "boosts"), "Announce", account, post["id"])
    message["published"] = now_iso()
    message["to"] = [PUBLIC]
    message["cc"] = boost_recipients(account, primary_recipient_id)
    return message


def build_undo_announce(
    account: Account,
    post: Dict[str, Any],
    primary_recipient_id: str,
    original_id: str,
) -> Dict[str, Any]:
    message = _envelope(f"{original_id}/undo", "Undo", account, {
        "id": original_id,
        "type": "Announce",
        "actor": account.id,
        "object": post["id"],
    })
    message["to"] = [PUBLIC]
    message["cc"] = boost_recipients(account, primary_recipient_id)
    return message


def build_note(
    account: Account,
    content: str,
    summary: Optional[str] = None,
    in_reply_to: Optional[str] = None,
    reply_author: Optional[str] = None,
) -> Dict[str, Any]:
    """A new public Note authored by the account."""
    guid = new_guid()
    note_id = f"{account.post_prefix}{guid}"
    cc = [account.followers]
    if reply_author:
        cc.append(reply_author)
    tags = []
    if reply_author:
        tags.append({"type": "Mention", "href": reply_author})
    return {
        "@context": AS_CONTEXT,
        "id": note_id,
        "type": "Note",
        "summary": summary,
        "inReplyTo": in_reply_to,
        "published": now_iso(),
        "attributedTo": account.id,
        "content": content,
        "url": f"https://{account.domain}/notes/{guid}",
        "to": [PUBLIC],
        "cc": cc,
        "sensitive": summary is not None,
        "attachment": [],
        "tag": tags,
        "replies": {
            "id": f"{note_id}/replies",
            "type": "Collection",
            "first": {
                "type": "CollectionPage",
                "partOf": f"{note_id}/replies",
                "items": [],
            },
        },
    }
