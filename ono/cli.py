#!/usr/bin/env python3
"""
ono CLI

Command-line access to a node's data directory:
  ono init - Create the account (keys, actor, webfinger)
  ono index - Rebuild the activity index and show counts
  ono feed - Print the home timeline
  ono thread - Print a conversation
  ono follow - Send a Follow to a remote account
  ono post - Publish a note to followers

Usage:
  ono -c ono.yaml init
  ono -c ono.yaml feed [--limit 20] [--offset 0]
  ono -c ono.yaml thread <note-id>
  ono -c ono.yaml follow <user@domain>
  ono -c ono.yaml post "<text>" [--summary <cw>] [--reply-to <id>]
"""

import argparse
import asyncio
import json
import logging
import re
import sys
from collections import Counter
from typing import List, Optional

from .algorithm import FeedEntry
from .config import NodeConfig
from .errors import OnoError
from .node import Node


def load_config(args) -> NodeConfig:
    """Config from --config, with command-line overrides."""
    data = {}
    if args.config:
        data = NodeConfig.from_file(args.config).to_dict()
    for key in ("username", "domain", "data_dir"):
        value = getattr(args, key, None)
        if value:
            data[key] = value
    return NodeConfig.from_dict(data)


def _text(html: str) -> str:
    return re.sub(r"<[^>]+>", "", html or "").strip()


def print_entry(entry: FeedEntry, indent: str = ""):
    author = entry.actor.handle if entry.actor else "?"
    line = f"{indent}{entry.note.get('published', '')}  {author}"
    if entry.booster:
        line += f"  (boosted by {entry.booster.handle})"
    print(line)
    if entry.note.get("summary"):
        print(f"{indent}  CW: {entry.note['summary']}")
    print(f"{indent}  {_text(entry.note.get('content', ''))}")
    if entry.stats:
        print(f"{indent}  {entry.stats['likes']} likes, {entry.stats['boosts']} boosts, "
              f"{entry.stats['replies']} replies")
    print(f"{indent}  {entry.note.get('id')}")


async def cmd_init(args):
    """Create the account and print its public documents."""
    config = load_config(args)
    node = Node(config)
    try:
        print(f"Account: {node.account.handle}")
        print(f"Actor: {node.account.id}")
        print(f"Data: {config.data_dir}")
        if args.show:
            print(json.dumps(node.account.webfinger(), indent=2))
            print(json.dumps(node.account.to_activitypub(), indent=2))
    finally:
        await node.close(drain=False)


async def cmd_index(args):
    """Rebuild the index and summarise it."""
    node = Node(load_config(args))
    try:
        count = node.store.build_index()
        print(f"Indexed {count} activities")
        for entry_type, n in sorted(Counter(e.type for e in node.store.entries()).items()):
            print(f"  {entry_type}: {n}")
        print(f"Followers: {len(node.social.get_followers())}")
        print(f"Following: {len(node.social.get_following())}")
    finally:
        await node.close(drain=False)


async def cmd_feed(args):
    async with Node(load_config(args)) as node:
        page = await node.build_feed(limit=args.limit, offset=args.offset)
        if args.json:
            print(json.dumps({"entries": [e.to_dict() for e in page.entries], "next": page.next}, indent=2))
            return
        for entry in page.entries:
            print_entry(entry)
            print()
        print(f"Next offset: {page.next}")


async def cmd_thread(args):
    async with Node(load_config(args)) as node:
        entries = await node.unroll_thread(args.note_id)
        if not entries:
            print(f"Could not load {args.note_id}", file=sys.stderr)
            sys.exit(1)
        for entry in entries:
            print_entry(entry, indent="  " if entry.note.get("inReplyTo") else "")
            print()


async def cmd_follow(args):
    async with Node(load_config(args)) as node:
        actor = await node.federation.fetch_user(node.account, args.handle)
        message = node.federation.send_follow(node.account, actor)
        print(f"Follow sent to {actor.id}")
        print(f"Activity: {message['id']}")


async def cmd_post(args):
    async with Node(load_config(args)) as node:
        note = await node.notes.create_note(args.content, summary=args.summary, in_reply_to=args.reply_to)
        print(f"Posted {note['id']}")


COMMANDS = {
    "init": cmd_init,
    "index": cmd_index,
    "feed": cmd_feed,
    "thread": cmd_thread,
    "follow": cmd_follow,
    "post": cmd_post,
}


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="ono",
        description="ono - single-user ActivityPub node",
    )
    parser.add_argument("-c", "--config", help="Config YAML file")
    parser.add_argument("--username", help="Account username (overrides config)")
    parser.add_argument("--domain", help="Account domain (overrides config)")
    parser.add_argument("--data-dir", dest="data_dir", help="Data directory (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Create the account")
    init_parser.add_argument("--show", action="store_true",
                             help="Print the webfinger and actor documents")

    # index command
    subparsers.add_parser("index", help="Rebuild the activity index")

    # feed command
    feed_parser = subparsers.add_parser("feed", help="Print the home timeline")
    feed_parser.add_argument("--limit", type=int, default=20, help="Posts per page (default: 20)")
    feed_parser.add_argument("--offset", type=int, default=0, help="Resume offset from a previous page")
    feed_parser.add_argument("--json", action="store_true", help="Output JSON")

    # thread command
    thread_parser = subparsers.add_parser("thread", help="Print a conversation")
    thread_parser.add_argument("note_id", help="Id of any post in the thread")

    # follow command
    follow_parser = subparsers.add_parser("follow", help="Follow a remote account")
    follow_parser.add_argument("handle", help="user@domain or actor URI")

    # post command
    post_parser = subparsers.add_parser("post", help="Publish a note")
    post_parser.add_argument("content", help="Note text (HTML allowed)")
    post_parser.add_argument("--summary", help="Content warning")
    post_parser.add_argument("--reply-to", dest="reply_to", help="Id of the post being replied to")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(command(args))
    except OnoError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
