"""
Project docs: API and SDK notes the user keeps under <root>/docs.

Documents are matched against the message by file name, keywords pulled from
their content and a table of well-known services, and the best ones are
inlined into the prompt.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from config import docs_dir

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = {".md", ".txt", ".json", ".yaml", ".yml"}
MAX_DOC_SIZE = 500000
DOC_CONTEXT_CHARS = 50000

# Auto-detected docs must score this much; an explicit @docs mention needs no minimum
CHAT_MIN_SCORE = 30
AGENT_MIN_SCORE = 20

SCORE_SERVICE = 50
SCORE_FILE_NAME = 30
SCORE_KEYWORD = 20
SCORE_CONTENT = 5

SERVICE_ALIASES: Dict[str, List[str]] = {
    "iyzico": ["iyzipay", "iyzico", "payment", "checkout"],
    "stripe": ["stripe", "payment", "checkout", "subscription"],
    "firebase": ["firebase", "firestore", "realtime", "fcm", "push"],
    "supabase": ["supabase", "postgres", "realtime", "auth"],
    "aws": ["aws", "amazon", "s3", "lambda", "dynamodb", "cognito"],
    "twilio": ["twilio", "sms", "whatsapp", "voice"],
    "sendgrid": ["sendgrid", "email", "mail"],
    "cloudinary": ["cloudinary", "image", "upload", "cdn"],
    "algolia": ["algolia", "search"],
    "pusher": ["pusher", "websocket", "realtime", "socket"],
    "redis": ["redis", "cache", "session"],
    "mongodb": ["mongodb", "mongo", "nosql", "database"],
    "prisma": ["prisma", "orm", "database", "migration"],
    "nextauth": ["nextauth", "auth", "authentication", "login"],
    "clerk": ["clerk", "auth", "authentication", "user"],
}

_KEY_PATTERNS = [
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"secret[_-]?key", re.IGNORECASE),
    re.compile(r"endpoint", re.IGNORECASE),
    re.compile(r"base[_-]?url", re.IGNORECASE),
    re.compile(r"sdk", re.IGNORECASE),
    re.compile(r"npm install ([a-z0-9@/-]+)", re.IGNORECASE),
    re.compile(r"import .+ from ['\"]([^'\"]+)['\"]"),
]


@dataclass
class DocFile:
    name: str
    path: str
    relative_path: str
    content: str
    size: int
    keywords: List[str] = field(default_factory=list)


@dataclass
class DocMatch:
    doc: DocFile
    score: int
    matched_keywords: List[str] = field(default_factory=list)


def extract_keywords(filename: str, content: str) -> List[str]:
    stem = os.path.splitext(filename.lower())[0]
    lower = content.lower()
    keywords = [stem] + re.split(r"[-_.\s]+", stem)
    for service, aliases in SERVICE_ALIASES.items():
        if any(alias in stem or alias in lower for alias in aliases):
            keywords.append(service)
            keywords.extend(aliases)
    for pattern in _KEY_PATTERNS:
        keywords.extend(m.group(0).lower() for m in pattern.finditer(content))
    return list(dict.fromkeys(k for k in keywords if len(k) > 2))


def scan_docs_folder(root: str) -> List[DocFile]:
    """Every readable doc under the docs folder, subfolders included."""
    base = docs_dir(root)
    if not os.path.isdir(base):
        return []
    docs = []
    for dirpath, dirs, files in os.walk(base):
        dirs.sort()
        for name in sorted(files):
            if os.path.splitext(name)[1].lower() not in DOC_EXTENSIONS:
                continue
            full = os.path.join(dirpath, name)
            try:
                size = os.path.getsize(full)
                if size > MAX_DOC_SIZE:
                    logger.info(f"Skipping large doc {full} ({size} bytes)")
                    continue
                with open(full, "r", encoding="utf-8") as f:
                    content = f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable doc {full}: {e}")
                continue
            docs.append(DocFile(
                name=name,
                path=full,
                relative_path=os.path.relpath(full, base).replace(os.sep, "/"),
                content=content,
                size=size,
                keywords=extract_keywords(name, content),
            ))
    return docs


def find_relevant_docs(query: str, docs: List[DocFile], max_results: int = 3) -> List[DocMatch]:
    """Docs scored against query, best first. Docs scoring zero are left out."""
    words = [w for w in query.lower().split() if len(w) > 2]
    matches = []
    for doc in docs:
        score = 0
        matched: List[str] = []
        content = doc.content.lower()
        for word in words:
            for service, aliases in SERVICE_ALIASES.items():
                if word in aliases or service in word:
                    if any(k in aliases or service in k for k in doc.keywords):
                        score += SCORE_SERVICE
                        matched.append(service)
            for keyword in doc.keywords:
                if keyword in word or word in keyword:
                    score += SCORE_KEYWORD
                    matched.append(keyword)
            if word in content:
                score += SCORE_CONTENT
        name = doc.name.lower()
        for word in words:
            if word in name:
                score += SCORE_FILE_NAME
                matched.append(doc.name)
        if score > 0:
            matches.append(DocMatch(doc=doc, score=score, matched_keywords=list(dict.fromkeys(matched))))
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:max_results]


def build_docs_context(matches: List[DocMatch]) -> str:
    if not matches:
        return ""
    parts = [
        "\n\n=== PROJECT DOCS ===",
        "From the project's docs folder. Treat them as the reference when implementing.",
    ]
    for match in matches:
        content = match.doc.content
        if len(content) > DOC_CONTEXT_CHARS:
            content = content[:DOC_CONTEXT_CHARS] + "\n... [truncated]"
        parts.append(f"\n📚 {match.doc.relative_path} (matched: {', '.join(match.matched_keywords[:8])})")
        parts.append(f"```\n{content}\n```")
    return "\n".join(parts) + "\n"


def docs_status(root: str) -> str:
    docs = scan_docs_folder(root)
    if not docs:
        return ("No docs. Add API or SDK notes to the docs/ folder (for example docs/stripe.md), "
                "or create one with /docs new <service>.")
    lines = [f"Docs: {len(docs)} files"]
    for doc in docs:
        lines.append(f"  {doc.relative_path} ({max(1, round(doc.size / 1024))}KB) {', '.join(doc.keywords[:5])}")
    return "\n".join(lines)


_TEMPLATE = """# {title} integration notes

## Installation
```bash
npm install {package}
```

## Configuration
```bash
# .env
{env}_API_KEY=your_api_key
{env}_SECRET_KEY=your_secret_key
```

## Basic usage
```typescript
// example code
```

## API endpoints
- POST /api/... - description
- GET /api/... - description

## Notes
"""


def create_doc_template(root: str, service_name: str) -> Tuple[str, bool]:
    """Write docs/<service>.md from a template. Returns (path, created); existing files are kept."""
    slug = re.sub(r"[^a-z0-9_-]+", "-", service_name.strip().lower()).strip("-")
    if not slug:
        raise ValueError("Service name must contain letters or digits")
    base = docs_dir(root)
    path = os.path.join(base, f"{slug}.md")
    if os.path.exists(path):
        return path, False
    os.makedirs(base, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(_TEMPLATE.format(title=service_name.strip(), package=slug, env=slug.upper().replace("-", "_")))
    logger.info(f"Created doc template {path}")
    return path, True
