"""
Lifecycle hints for declared resources.

CloudFormation has native fields for protecting a resource from deletion, but
none for ignoring drift on selected properties or for ordering a replacement.
Those hints are recorded in the resource metadata under the 'Lifecycle' key so
that the deployment tooling can read them from the synthesized template.
"""

import logging
from typing import Iterable, Optional

from aws_cdk import CfnResource, RemovalPolicy

logger = logging.getLogger(__name__)

LIFECYCLE_METADATA_KEY = 'Lifecycle'


def apply_lifecycle(
	resource: CfnResource,
	*,
	ignore_changes: Optional[Iterable[str]] = None,
	prevent_destroy: bool = False,
	create_before_destroy: bool = False,
) -> None:
	"""
	Attach lifecycle hints to a CloudFormation resource.

	Args:
	    resource: The resource to annotate
	    ignore_changes: Property paths whose drift after creation is intentional
	    prevent_destroy: Retain the resource on stack deletion or replacement
	    create_before_destroy: Replacement must create the new resource first
	"""
	hints = {}
	if ignore_changes:
		hints['IgnoreChanges'] = list(ignore_changes)
	if prevent_destroy:
		resource.apply_removal_policy(RemovalPolicy.RETAIN)
		hints['PreventDestroy'] = True
	if create_before_destroy:
		hints['CreateBeforeDestroy'] = True

	if hints:
		resource.add_metadata(LIFECYCLE_METADATA_KEY, hints)
		logger.debug(f'Lifecycle hints for {resource.node.path}: {hints}')
