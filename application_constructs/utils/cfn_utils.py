"""
Helpers for populating CloudFormation (L1) resource properties.
"""

from typing import Dict, List, Optional

from aws_cdk import CfnTag
from constructs import Construct


def to_cfn_tags(tags: Optional[Dict[str, str]], **extra: str) -> Optional[List[CfnTag]]:
	"""
	Convert a tag dictionary into the list form L1 resources expect.

	Args:
	    tags: Caller supplied tags
	    **extra: Tags added on top of the caller's, overriding on conflict

	Returns:
	    A sorted list of CfnTag, or None when there is nothing to tag
	"""
	merged = {**(tags or {}), **extra}
	if not merged:
		return None
	return [CfnTag(key=key, value=value) for key, value in sorted(merged.items())]


def prefixed_name(construct: Construct, prefix: str, max_length: int = 63) -> str:
	"""
	Build a '<prefix>-<suffix>' physical name.

	The suffix is taken from the construct's address, so it is stable for a
	given position in the construct tree and differs between siblings.
	"""
	suffix = construct.node.addr[-8:]
	return f'{prefix[: max_length - len(suffix) - 1]}-{suffix}'
