#!/usr/bin/env python3
"""
Blog post collection, raw-markdown routes and RSS feed.

Posts are Markdown files with a YAML front matter block:

    ---
    title: Inference arithmetic
    description: LLM inference thoughts
    pubDate: 2025-10-21
    index: false        # optional, hides the post from the feed
    ---

`blog/{slug}/md` serves the body without front matter as text/markdown.
"""

from __future__ import annotations

import argparse
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import yaml

logger = logging.getLogger(__name__)

SITE_URL = "https://fergusfinn.com"
SITE_TITLE = "Fergus's blog"
SITE_DESCRIPTION = "LLM inference thoughts"

MARKDOWN_CONTENT_TYPE = "text/markdown; charset=utf-8"
POST_SUFFIXES = (".md", ".mdx")


class PostFormatError(ValueError):
    pass


@dataclass(frozen=True)
class Post:
    slug: str
    title: str
    description: str
    pub_date: datetime
    body: str
    updated_date: Optional[datetime] = None
    index: bool = True

    @property
    def link(self) -> str:
        return f"/blog/{self.slug}/"


def _coerce_date(value, field: str, source: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            try:
                parsed = datetime.strptime(value.strip(), "%b %d %Y")
            except ValueError:
                raise PostFormatError(f"{source}: cannot parse {field} '{value}'") from None
    else:
        raise PostFormatError(f"{source}: cannot parse {field} {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def split_front_matter(text: str, source: str = "<string>") -> Tuple[dict, str]:
    if not text.startswith("---"):
        return {}, text
    lines = text.splitlines(keepends=True)
    for end, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            header = "".join(lines[1:end])
            body = "".join(lines[end + 1:])
            try:
                data = yaml.safe_load(header) or {}
            except yaml.YAMLError as exc:
                raise PostFormatError(f"{source}: invalid front matter: {exc}") from exc
            if not isinstance(data, dict):
                raise PostFormatError(f"{source}: front matter must be a mapping")
            return data, body
    raise PostFormatError(f"{source}: unterminated front matter")


def parse_post(slug: str, text: str, source: str = "<string>") -> Post:
    data, body = split_front_matter(text, source)
    for key in ("title", "description", "pubDate"):
        if key not in data:
            raise PostFormatError(f"{source}: missing '{key}' in front matter")
    updated = data.get("updatedDate")
    index = data.get("index", True)
    if not isinstance(index, bool):
        raise PostFormatError(f"{source}: 'index' must be true or false, got {index!r}")
    return Post(
        slug=slug,
        title=str(data["title"]),
        description=str(data["description"]),
        pub_date=_coerce_date(data["pubDate"], "pubDate", source),
        updated_date=_coerce_date(updated, "updatedDate", source) if updated is not None else None,
        index=index,
        body=body,
    )


def load_posts(content_dir: Path) -> List[Post]:
    posts = []
    for path in sorted(content_dir.rglob("*")):
        if path.suffix not in POST_SUFFIXES or not path.is_file():
            continue
        slug = path.relative_to(content_dir).with_suffix("").as_posix()
        posts.append(parse_post(slug, path.read_text(encoding="utf-8"), source=str(path)))
    logger.info("loaded %d posts from %s", len(posts), content_dir)
    return posts


def markdown_source(post: Post) -> Tuple[str, str]:
    return post.body, MARKDOWN_CONTENT_TYPE


def write_markdown_routes(posts: Iterable[Post], output_dir: Path) -> List[Path]:
    written = []
    for post in posts:
        body, _ = markdown_source(post)
        target = output_dir / "blog" / post.slug / "md"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(body, encoding="utf-8")
        written.append(target)
    return written


def rss_feed(
    posts: Iterable[Post],
    site: str = SITE_URL,
    title: str = SITE_TITLE,
    description: str = SITE_DESCRIPTION,
) -> str:
    site_root = site.rstrip("/") + "/"
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    ET.SubElement(channel, "title").text = title
    ET.SubElement(channel, "description").text = description
    ET.SubElement(channel, "link").text = site_root
    for post in posts:
        if not post.index:
            continue
        item = ET.SubElement(channel, "item")
        link = urljoin(site_root, post.link.lstrip("/"))
        ET.SubElement(item, "title").text = post.title
        ET.SubElement(item, "link").text = link
        ET.SubElement(item, "guid", isPermaLink="true").text = link
        ET.SubElement(item, "description").text = post.description
        ET.SubElement(item, "pubDate").text = format_datetime(post.pub_date)
    return '<?xml version="1.0" encoding="UTF-8"?>' + ET.tostring(rss, encoding="unicode")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the RSS feed and raw-markdown routes")
    parser.add_argument("content_dir", type=Path, help="Directory of Markdown posts.")
    parser.add_argument("--output-dir", type=Path, default=Path("dist"))
    parser.add_argument("--site", default=SITE_URL, help="Absolute site URL used for feed links.")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    posts = load_posts(args.content_dir)
    args.output_dir.mkdir(parents=True, exist_ok=True)
    feed_path = args.output_dir / "rss.xml"
    feed_path.write_text(rss_feed(posts, site=args.site), encoding="utf-8")
    routes = write_markdown_routes(posts, args.output_dir)
    print(f"Feed: {feed_path} ({sum(p.index for p in posts)} of {len(posts)} posts indexed)")
    print(f"Markdown routes: {len(routes)}")


if __name__ == "__main__":
    main()
