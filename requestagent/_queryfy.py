import urllib.parse
from collections.abc import Mapping
from typing import Any


# characters left alone by javascript's encodeURIComponent / encodeURI
_COMPONENT_SAFE = "-_.!~*'()"
_URI_SAFE = _COMPONENT_SAFE + ";,/?:@&=+$#"


def _encode_component(value: Any) -> str:
    if isinstance(value, bool):
        value = 'true' if value else 'false'
    return urllib.parse.quote(str(value), safe=_COMPONENT_SAFE)


def _walk(key: str, value: Any, prefix: str | None, pairs: list[str]) -> None:
    name = f'{prefix}[{key}]' if prefix else key

    if isinstance(value, Mapping):
        for sub_key, sub_value in value.items():
            if sub_value is not None:
                _walk(str(sub_key), sub_value, name, pairs)
    elif isinstance(value, (list, tuple)):
        pairs.extend(
            f'{name}={_encode_component(item)}'
            for item in value
            if item is not None
        )
    elif value is not None:
        pairs.append(f'{name}={_encode_component(value)}')


def queryfy(query: Any) -> str:
    '''
    Turn a value into a query string.

    - a mapping becomes `key=value` pairs joined by `&`, nested mappings
      are written as `parent[child]=value` and sequences repeat their key
      (`key=a&key=b`), `None` values are skipped
    - a list or tuple is joined with `&` as it is
    - any other value is URI encoded
    - `None` gives an empty string

    Parameters
    ----------
    query : Any

    Returns
    -------
    str
    '''
    if isinstance(query, Mapping):
        pairs: list[str] = []
        for key, value in query.items():
            if value is not None:
                _walk(str(key), value, None, pairs)
        return '&'.join(pairs)

    if isinstance(query, (list, tuple)):
        return '&'.join(str(item) for item in query)

    if query is None:
        return ''

    return urllib.parse.quote(str(query), safe=_URI_SAFE)
