"""
Configuration loading for the application environment.

This module reads the JSON settings file and turns each section into the
properties objects the construct builders accept.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from aws_cdk import aws_dynamodb as ddb

from application_constructs.environment_stack import ApplicationEnvironmentProps
from application_constructs.resources.dynamodb import (
	ApplicationDynamoDBTableProps,
	ApplicationTableConfig,
	TableAutoScaleProps,
	TableCapacityMode,
)
from application_constructs.resources.load_balancer import AccessLogsProps, ApplicationLoadBalancerProps
from application_constructs.resources.rds_cluster import ApplicationRDSClusterConfig, ApplicationRDSClusterProps
from application_constructs.utils.validation import ConfigurationError, require_key

logger = logging.getLogger(__name__)


def get_config(json_dir):
	"""
	Load a JSON configuration file.

	Args:
	    json_dir: Path to the JSON file

	Returns:
	    The loaded JSON configuration as a Python object
	"""
	with open(json_dir, 'r') as json_file:
		config = json.load(json_file)
		return config


def select_subnets(network: Dict[str, Any], subnets: str) -> List[str]:
	"""
	Return the subnet ids of the 'public' or 'private' tier of the network.
	"""
	if subnets not in ('public', 'private'):
		raise ConfigurationError(f"subnets must be 'public' or 'private', got {subnets!r}")
	return require_key(network, f'{subnets}_subnet_ids', 'network')


def load_balancer_props_from_config(
	section: Dict[str, Any], network: Dict[str, Any], tags: Dict[str, str]
) -> ApplicationLoadBalancerProps:
	"""
	Build load balancer properties from a 'load_balancers' entry.

	Internal load balancers are placed in the private subnets and external ones
	in the public subnets unless 'subnets' says otherwise.
	"""
	internal = section.get('internal', False)
	access_logs = None
	if 'access_logs' in section:
		access_logs = AccessLogsProps(
			existing_bucket=section['access_logs'].get('existing_bucket'),
			bucket=section['access_logs'].get('bucket'),
			prefix=section['access_logs'].get('prefix'),
		)

	return ApplicationLoadBalancerProps(
		prefix=require_key(section, 'prefix', 'load_balancers'),
		alb_short_name=require_key(section, 'alb_short_name', 'load_balancers'),
		vpc_id=require_key(network, 'vpc_id', 'network'),
		subnet_ids=select_subnets(network, section.get('subnets', 'private' if internal else 'public')),
		internal=internal,
		access_logs=access_logs,
		tags={**tags, **section.get('tags', {})},
	)


def rds_cluster_props_from_config(
	section: Dict[str, Any], network: Dict[str, Any], tags: Dict[str, str]
) -> ApplicationRDSClusterProps:
	"""
	Build cluster properties from an 'rds_clusters' entry.

	The 'cluster' object holds the ApplicationRDSClusterConfig keywords,
	using CloudFormation property names in snake case.
	"""
	cluster = dict(require_key(section, 'cluster', 'rds_clusters'))
	return ApplicationRDSClusterProps(
		prefix=require_key(section, 'prefix', 'rds_clusters'),
		vpc_id=require_key(network, 'vpc_id', 'network'),
		subnet_ids=select_subnets(network, section.get('subnets', 'private')),
		rds_config=ApplicationRDSClusterConfig(
			engine=require_key(cluster, 'engine', 'rds_clusters.cluster'),
			master_username=require_key(cluster, 'master_username', 'rds_clusters.cluster'),
			**{key: value for key, value in cluster.items() if key not in ('engine', 'master_username')},
		),
		tags={**tags, **section.get('tags', {})},
	)


def autoscale_props_from_config(capacity: Optional[Dict[str, Any]]) -> Optional[TableAutoScaleProps]:
	"""
	Convert a {tracking, max, min} capacity object into TableAutoScaleProps.
	"""
	if capacity is None:
		return None
	return TableAutoScaleProps(
		tracking=require_key(capacity, 'tracking', 'capacity'),
		max_capacity=require_key(capacity, 'max', 'capacity'),
		min_capacity=require_key(capacity, 'min', 'capacity'),
	)


def capacity_mode_from_config(capacity_mode: Optional[str]) -> Optional[TableCapacityMode]:
	"""
	Accept either the member name (ON_DEMAND) or the CloudFormation value (PAY_PER_REQUEST).
	"""
	if capacity_mode is None:
		return None
	if capacity_mode in TableCapacityMode.__members__:
		return TableCapacityMode[capacity_mode]
	try:
		return TableCapacityMode(capacity_mode)
	except ValueError:
		raise ConfigurationError(f'Unknown capacity_mode {capacity_mode!r}') from None


def key_schema_from_config(section: Dict[str, Any], section_name: str) -> List[ddb.CfnTable.KeySchemaProperty]:
	key_schema = [
		ddb.CfnTable.KeySchemaProperty(attribute_name=require_key(section, 'hash_key', section_name), key_type='HASH')
	]
	if section.get('range_key'):
		key_schema.append(ddb.CfnTable.KeySchemaProperty(attribute_name=section['range_key'], key_type='RANGE'))
	return key_schema


def global_secondary_index_from_config(index: Dict[str, Any]) -> ddb.CfnTable.GlobalSecondaryIndexProperty:
	"""
	Convert a 'global_secondary_indexes' entry into the CloudFormation property.

	An index without read_capacity and write_capacity is declared without
	provisioned throughput, as on-demand tables require.
	"""
	provisioned_throughput = None
	if 'read_capacity' in index or 'write_capacity' in index:
		provisioned_throughput = ddb.CfnTable.ProvisionedThroughputProperty(
			read_capacity_units=require_key(index, 'read_capacity', 'global_secondary_indexes'),
			write_capacity_units=require_key(index, 'write_capacity', 'global_secondary_indexes'),
		)

	return ddb.CfnTable.GlobalSecondaryIndexProperty(
		index_name=require_key(index, 'name', 'global_secondary_indexes'),
		key_schema=key_schema_from_config(index, 'global_secondary_indexes'),
		projection=ddb.CfnTable.ProjectionProperty(
			projection_type=index.get('projection_type', 'ALL'),
			non_key_attributes=index.get('non_key_attributes'),
		),
		provisioned_throughput=provisioned_throughput,
	)


def dynamodb_table_props_from_config(section: Dict[str, Any], tags: Dict[str, str]) -> ApplicationDynamoDBTableProps:
	"""
	Build table properties from a 'dynamodb_tables' entry.

	Expected keys of the 'table' object are hash_key, range_key, attributes
	(a list of {name, type}), global_secondary_indexes, read_capacity_units,
	write_capacity_units, stream_enabled and stream_view_type.
	"""
	table = require_key(section, 'table', 'dynamodb_tables')

	table_config = ApplicationTableConfig(
		key_schema=key_schema_from_config(table, 'dynamodb_tables.table'),
		attribute_definitions=[
			ddb.CfnTable.AttributeDefinitionProperty(attribute_name=attribute['name'], attribute_type=attribute['type'])
			for attribute in require_key(table, 'attributes', 'dynamodb_tables.table')
		],
		global_secondary_indexes=[
			global_secondary_index_from_config(index) for index in table.get('global_secondary_indexes', [])
		],
		read_capacity_units=table.get('read_capacity_units'),
		write_capacity_units=table.get('write_capacity_units'),
		stream_enabled=table.get('stream_enabled', False),
		stream_view_type=table.get('stream_view_type'),
	)

	return ApplicationDynamoDBTableProps(
		prefix=require_key(section, 'prefix', 'dynamodb_tables'),
		table_config=table_config,
		read_capacity=autoscale_props_from_config(section.get('read_capacity')),
		write_capacity=autoscale_props_from_config(section.get('write_capacity')),
		capacity_mode=capacity_mode_from_config(section.get('capacity_mode')),
		prevent_destroy_table=section.get('prevent_destroy_table'),
		tags={**tags, **section.get('tags', {})},
	)


def environment_props_from_settings(settings: Dict[str, Any]) -> ApplicationEnvironmentProps:
	"""
	Build the environment stack properties from the whole settings file.

	Every entry of load_balancers, rds_clusters and dynamodb_tables needs a
	'name', used as the construct id of the resources built for it.
	"""
	tags = settings.get('tags', {})
	network = settings.get('network', {})

	def by_name(section_name, build):
		items = {}
		for section in settings.get(section_name, []):
			name = require_key(section, 'name', section_name)
			if name in items:
				raise ConfigurationError(f'Duplicate name {name!r} in {section_name}')
			items[name] = build(section)
		logger.debug(f'Loaded {len(items)} {section_name} from settings')
		return items

	return ApplicationEnvironmentProps(
		stack_name=require_key(settings, 'stack_name', 'settings'),
		tags=tags,
		load_balancers=by_name('load_balancers', lambda s: load_balancer_props_from_config(s, network, tags)),
		rds_clusters=by_name('rds_clusters', lambda s: rds_cluster_props_from_config(s, network, tags)),
		dynamodb_tables=by_name('dynamodb_tables', lambda s: dynamodb_table_props_from_config(s, tags)),
	)
