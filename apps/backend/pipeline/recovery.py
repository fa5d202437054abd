"""
Partial-result recovery for model output that should be JSON.

Model responses are often wrapped in code fences, prefixed with prose or cut off
mid-structure when the output token limit is hit. RecoveryParser keeps every
complete piece it can find and always returns valid JSON.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```[a-zA-Z]*[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)
LIST_KEYS = ('jobs', 'postings', 'records', 'results', 'items', 'data')

_decoder = json.JSONDecoder()


def _is_valid(text: str) -> bool:
    try:
        json.loads(text)
        return True
    except ValueError:
        return False


def _skip_ws(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in ' \t\r\n':
        pos += 1
    return pos


def _is_complete_value(value: str) -> bool:
    """Cheap completeness check for one `"key": value` line."""
    value = value.strip().rstrip(',').strip()
    if not value:
        return False
    if value.startswith('"'):
        return len(value) > 1 and value.endswith('"') and not value.endswith('\\"')
    if value in ('true', 'false', 'null'):
        return True
    if re.fullmatch(r"-?\d+(\.\d+)?([eE][+-]?\d+)?", value):
        return True
    if value.startswith('[') and value.endswith(']'):
        return True
    if value.startswith('{') and value.endswith('}'):
        return True
    return False


class RecoveryParser:
    """Recovers the longest valid structured prefix from a model response."""

    def strip_wrapping(self, text: str) -> str:
        text = text.strip().lstrip('\ufeff')
        if '```' in text:
            match = FENCE_PATTERN.search(text)
            if match:
                text = match.group(1).strip()
        return text

    def recover(self, text: Optional[str], expect: str = 'auto') -> str:
        """
        Return a syntactically valid JSON string recovered from text.

        Already-valid JSON is returned unchanged. When nothing is recoverable
        the result is "[]" or "{}" depending on the expected shape.
        """
        if text is None:
            return self._empty(expect, '')
        if _is_valid(text):
            return text

        try:
            return self._recover(text, expect)
        except Exception as e:
            logger.warning(f"[recovery] Unexpected error while recovering response: {e}", exc_info=True)
            return self._empty(expect, text)

    def parse_array(self, text: Optional[str]) -> List[Dict[str, Any]]:
        """Recover a list of record dicts. Non-dict items are dropped."""
        data = json.loads(self.recover(text, 'array'))
        if isinstance(data, dict):
            for key in LIST_KEYS:
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
            else:
                data = [data] if data else []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def parse_object(self, text: Optional[str]) -> Dict[str, Any]:
        """Recover a single object. A list response yields its first object."""
        data = json.loads(self.recover(text, 'object'))
        if isinstance(data, dict):
            return data
        if isinstance(data, list):
            for item in data:
                if isinstance(item, dict):
                    return item
        return {}

    def _recover(self, text: str, expect: str) -> str:
        cleaned = self.strip_wrapping(text)
        if _is_valid(cleaned):
            return cleaned

        start = self._structure_start(cleaned, expect)
        if start < 0:
            logger.debug(f"[recovery] No JSON structure found in response ({len(text)} chars)")
            return self._empty(expect, cleaned)

        # Complete leading document followed by trailing prose
        try:
            value, end = _decoder.raw_decode(cleaned, start)
            if isinstance(value, (list, dict)):
                return cleaned[start:end]
        except ValueError:
            pass

        body = cleaned[start:]
        shape = 'array' if body.startswith('[') else 'object'
        if expect == 'array' or (expect == 'auto' and shape == 'array'):
            recovered = self._recover_array(cleaned)
        else:
            recovered = self._recover_object(body)

        logger.info(f"[recovery] Recovered partial {expect if expect != 'auto' else shape} from malformed response")
        return recovered

    def _structure_start(self, text: str, expect: str) -> int:
        brace = text.find('{')
        bracket = text.find('[')
        if expect == 'object':
            return brace
        candidates = [i for i in (brace, bracket) if i >= 0]
        return min(candidates) if candidates else -1

    def _recover_array(self, text: str) -> str:
        """Keep every complete top-level object inside the first array."""
        bracket = text.find('[')
        if bracket >= 0:
            start = bracket + 1
        elif '{' in text:
            start = text.find('{')
        else:
            return '[]'

        objects: List[str] = []
        depth = 0
        object_start = -1
        in_string = False
        escaped = False

        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == '\\':
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
            elif ch == '{':
                if depth == 0:
                    object_start = i
                depth += 1
            elif ch == '}':
                if depth == 0:
                    continue
                depth -= 1
                if depth == 0 and object_start >= 0:
                    candidate = text[object_start:i + 1]
                    if _is_valid(candidate):
                        objects.append(candidate)
                    else:
                        logger.debug(f"[recovery] Dropping invalid object at offset {object_start}")
                    object_start = -1
            elif ch == ']' and depth == 0 and objects:
                break

        return '[' + ','.join(objects) + ']'

    def _recover_object(self, text: str) -> str:
        fields = self._walk_pairs(text)
        # Lines past the point where the walker stopped may still hold complete pairs
        for key, value in self._line_pairs(text).items():
            fields.setdefault(key, value)
        return json.dumps(fields, ensure_ascii=False) if fields else '{}'

    def _walk_pairs(self, text: str) -> Dict[str, Any]:
        """Decode `"key": value` pairs in order until the first incomplete one."""
        fields: Dict[str, Any] = {}
        pos = _skip_ws(text, 0)
        if pos >= len(text) or text[pos] != '{':
            return fields
        pos += 1

        while True:
            pos = _skip_ws(text, pos)
            if pos < len(text) and text[pos] == ',':
                pos = _skip_ws(text, pos + 1)
            if pos >= len(text) or text[pos] != '"':
                break
            try:
                key, pos = _decoder.raw_decode(text, pos)
                pos = _skip_ws(text, pos)
                if pos >= len(text) or text[pos] != ':':
                    break
                value, pos = _decoder.raw_decode(text, _skip_ws(text, pos + 1))
            except ValueError:
                break
            # A bare number at the very end may itself be cut off
            if pos >= len(text) and isinstance(value, (int, float)) and not isinstance(value, bool):
                break
            fields[key] = value
        return fields

    def _line_pairs(self, text: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        depth = 0
        in_string = False
        escaped = False
        for raw_line in text.split('\n'):
            line_depth = depth
            for ch in raw_line:
                if in_string:
                    if escaped:
                        escaped = False
                    elif ch == '\\':
                        escaped = True
                    elif ch == '"':
                        in_string = False
                elif ch == '"':
                    in_string = True
                elif ch in '{[':
                    depth += 1
                elif ch in '}]':
                    depth -= 1

            # Only pairs that belong to the top-level object
            line = raw_line.strip()
            if line_depth != 1 or not line.startswith('"') or ':' not in line:
                continue
            key_part, _, value_part = line.partition(':')
            key_part = key_part.strip()
            if len(key_part) < 2 or not key_part.endswith('"'):
                continue
            if not _is_complete_value(value_part):
                continue
            value_text = value_part.strip().rstrip(',').strip()
            try:
                fields[json.loads(key_part)] = json.loads(value_text)
            except ValueError:
                continue
        return fields

    def _empty(self, expect: str, text: str) -> str:
        if expect == 'object':
            return '{}'
        if expect == 'auto' and text.lstrip().startswith('{'):
            return '{}'
        return '[]'


recovery_parser = RecoveryParser()
