"""
DynamoDB tables for applications.

This module provides the builder for a DynamoDB table with:
- On-demand or provisioned capacity
- Validated stream configuration
- Target tracking autoscaling for the table and each global secondary index,
  with the IAM role application autoscaling acts through
"""

import logging
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Union

from constructs import Construct
from aws_cdk import (
	Names,
	Tags,
	aws_applicationautoscaling as appscaling,
	aws_dynamodb as ddb,
	aws_iam as iam,
)
from cdk_nag import NagSuppressions

from application_constructs.utils.cfn_utils import to_cfn_tags
from application_constructs.utils.lifecycle import apply_lifecycle
from application_constructs.utils.validation import ConfigurationError, reject_controlled_fields

logger = logging.getLogger(__name__)

CONTROLLED_TABLE_PROPERTIES = (
	'table_name',
	'tags',
	'billing_mode',
	'stream_specification',
	'provisioned_throughput',
)


class TableCapacityType(Enum):
	"""Capacity dimension an autoscaling policy acts on."""

	READ = 'ReadCapacity'
	WRITE = 'WriteCapacity'


class TableCapacityMode(Enum):
	"""Billing mode of the table. On-demand is called PAY_PER_REQUEST by CloudFormation."""

	PROVISIONED = 'PROVISIONED'
	ON_DEMAND = 'PAY_PER_REQUEST'


class TableStreamViewType(Enum):
	KEYS_ONLY = 'KEYS_ONLY'
	NEW_IMAGE = 'NEW_IMAGE'
	OLD_IMAGE = 'OLD_IMAGE'
	NEW_AND_OLD_IMAGES = 'NEW_AND_OLD_IMAGES'


class TableAutoScaleProps:
	"""
	Target tracking settings for one capacity dimension.

	Attributes:
	    tracking (float): Target utilization percentage, in (0, 100]
	    max_capacity (int): Upper bound of the provisioned capacity
	    min_capacity (int): Lower bound of the provisioned capacity
	"""

	def __init__(self, *, tracking: float, max_capacity: int, min_capacity: int):
		if not 0 < tracking <= 100:
			raise ConfigurationError(f'tracking must be a percentage in (0, 100], got {tracking}')
		if min_capacity < 1:
			raise ConfigurationError(f'min_capacity must be at least 1, got {min_capacity}')
		if min_capacity > max_capacity:
			raise ConfigurationError(f'min_capacity ({min_capacity}) cannot exceed max_capacity ({max_capacity})')
		self.tracking = tracking
		self.max_capacity = max_capacity
		self.min_capacity = min_capacity


class ApplicationTableConfig:
	"""
	Table settings accepted by create_application_dynamodb_table.

	Any keyword not listed below is passed through to ddb.CfnTable, except for
	the properties the builder sets itself (name, tags, billing mode, stream
	specification and provisioned throughput, which comes from
	read_capacity_units and write_capacity_units).

	Attributes:
	    key_schema (List[ddb.CfnTable.KeySchemaProperty]): Primary key
	    attribute_definitions (List[ddb.CfnTable.AttributeDefinitionProperty]): Key attributes
	    global_secondary_indexes (List[ddb.CfnTable.GlobalSecondaryIndexProperty]): Secondary indexes
	    read_capacity_units (Optional[int]): Initial read capacity of a provisioned table
	    write_capacity_units (Optional[int]): Initial write capacity of a provisioned table
	    stream_enabled (bool): Enable the change stream
	    stream_view_type (Optional[Union[TableStreamViewType, str]]): Shape of the stream records
	    table_props (Dict[str, Any]): Remaining CfnTable properties
	"""

	def __init__(
		self,
		*,
		key_schema: List[ddb.CfnTable.KeySchemaProperty],
		attribute_definitions: Optional[List[ddb.CfnTable.AttributeDefinitionProperty]] = None,
		global_secondary_indexes: Optional[List[ddb.CfnTable.GlobalSecondaryIndexProperty]] = None,
		read_capacity_units: Optional[int] = None,
		write_capacity_units: Optional[int] = None,
		stream_enabled: bool = False,
		stream_view_type: Optional[Union[TableStreamViewType, str]] = None,
		**table_props: Any,
	):
		reject_controlled_fields('ApplicationTableConfig', table_props, CONTROLLED_TABLE_PROPERTIES)
		self.key_schema = key_schema
		self.attribute_definitions = attribute_definitions
		self.global_secondary_indexes = global_secondary_indexes or []
		self.read_capacity_units = read_capacity_units
		self.write_capacity_units = write_capacity_units
		self.stream_enabled = stream_enabled
		self.stream_view_type = stream_view_type
		self.table_props = table_props


class ApplicationDynamoDBTableProps:
	"""
	Properties for create_application_dynamodb_table.

	Attributes:
	    prefix (str): Name of the table, also used to name the autoscaling role and policy
	    table_config (ApplicationTableConfig): Table settings
	    read_capacity (Optional[TableAutoScaleProps]): Read autoscaling, none when omitted
	    write_capacity (Optional[TableAutoScaleProps]): Write autoscaling, none when omitted
	    capacity_mode (Optional[TableCapacityMode]): Billing mode, PROVISIONED when omitted.
	        Capacity autoscaling cannot be combined with ON_DEMAND.
	    prevent_destroy_table (Optional[bool]): Retain the table on deletion unless explicitly False
	    tags (Dict[str, str]): Tags applied to every resource
	"""

	def __init__(
		self,
		*,
		prefix: str,
		table_config: ApplicationTableConfig,
		read_capacity: Optional[TableAutoScaleProps] = None,
		write_capacity: Optional[TableAutoScaleProps] = None,
		capacity_mode: Optional[TableCapacityMode] = None,
		prevent_destroy_table: Optional[bool] = None,
		tags: Optional[Dict[str, str]] = None,
	):
		self.prefix = prefix
		self.table_config = table_config
		self.read_capacity = read_capacity
		self.write_capacity = write_capacity
		self.capacity_mode = capacity_mode
		self.prevent_destroy_table = prevent_destroy_table
		self.tags = tags or {}


class ApplicationDynamoDBTableResources(NamedTuple):
	table: ddb.CfnTable


def create_application_dynamodb_table(
	scope: Construct, construct_id: str, props: ApplicationDynamoDBTableProps
) -> ApplicationDynamoDBTableResources:
	"""
	Create a DynamoDB table and, when capacity settings are given, its autoscaling.

	Args:
	    scope: The CDK construct scope
	    construct_id: Identifier of the construct grouping the resources
	    props: Table properties

	Returns:
	    ApplicationDynamoDBTableResources: The created table

	Raises:
	    ConfigurationError: If the stream or capacity configuration is invalid
	"""
	table_config = props.table_config
	validate_stream_config(table_config)

	capacity_mode = props.capacity_mode or TableCapacityMode.PROVISIONED
	prevent_destroy = props.prevent_destroy_table is not False
	autoscaling = [
		(capacity_type, autoscale_props)
		for capacity_type, autoscale_props in (
			(TableCapacityType.READ, props.read_capacity),
			(TableCapacityType.WRITE, props.write_capacity),
		)
		if autoscale_props is not None
	]
	if capacity_mode is TableCapacityMode.ON_DEMAND and autoscaling:
		raise ConfigurationError('read_capacity and write_capacity cannot be used with an ON_DEMAND table')
	if autoscaling:
		validate_index_throughput(table_config.global_secondary_indexes)

	construct = Construct(scope, construct_id)
	logger.info(f'Creating DynamoDB table {props.prefix} with billing mode {capacity_mode.value}')

	stream_specification = None
	if table_config.stream_enabled:
		stream_specification = ddb.CfnTable.StreamSpecificationProperty(
			stream_view_type=TableStreamViewType(table_config.stream_view_type).value
		)

	table = ddb.CfnTable(
		construct,
		'dynamodb_table',
		**table_config.table_props,
		key_schema=table_config.key_schema,
		attribute_definitions=table_config.attribute_definitions,
		global_secondary_indexes=table_config.global_secondary_indexes or None,
		billing_mode=capacity_mode.value,
		provisioned_throughput=resolve_provisioned_throughput(
			table_config, capacity_mode, props.read_capacity, props.write_capacity
		),
		stream_specification=stream_specification,
		table_name=props.prefix,
		tags=to_cfn_tags(props.tags),
	)
	# Capacity is owned by the autoscaling policies once the table exists
	apply_lifecycle(
		table,
		ignore_changes=['ProvisionedThroughput.ReadCapacityUnits', 'ProvisionedThroughput.WriteCapacityUnits'],
		prevent_destroy=prevent_destroy,
	)

	for capacity_type, autoscale_props in autoscaling:
		setup_autoscaling(
			construct,
			props.prefix,
			autoscale_props,
			table,
			capacity_type,
			table_config.global_secondary_indexes,
			props.tags,
		)

	return ApplicationDynamoDBTableResources(table=table)


def validate_stream_config(table_config: ApplicationTableConfig) -> None:
	"""
	If streams are enabled, validate the stream view type is present and
	one of the expected values.

	Raises:
	    ConfigurationError: If the stream view type is missing or unknown
	"""
	if not table_config.stream_enabled:
		return

	view_type = table_config.stream_view_type
	if not view_type:
		raise ConfigurationError('you must specify a stream view type if streams are enabled')

	if isinstance(view_type, TableStreamViewType):
		return

	if view_type not in [member.value for member in TableStreamViewType]:
		raise ConfigurationError('you must specify a valid stream view type')


def resolve_provisioned_throughput(
	table_config: ApplicationTableConfig,
	capacity_mode: TableCapacityMode,
	read_capacity: Optional[TableAutoScaleProps],
	write_capacity: Optional[TableAutoScaleProps],
) -> Optional[ddb.CfnTable.ProvisionedThroughputProperty]:
	"""
	Return the initial throughput of a provisioned table.

	Units missing from the table config fall back to the autoscaling minimum
	of the same dimension.
	"""
	if capacity_mode is TableCapacityMode.ON_DEMAND:
		if table_config.read_capacity_units is not None or table_config.write_capacity_units is not None:
			raise ConfigurationError('read_capacity_units and write_capacity_units cannot be used with an ON_DEMAND table')
		return None

	read_units = table_config.read_capacity_units
	if read_units is None and read_capacity is not None:
		read_units = read_capacity.min_capacity
	write_units = table_config.write_capacity_units
	if write_units is None and write_capacity is not None:
		write_units = write_capacity.min_capacity

	if read_units is None or write_units is None:
		raise ConfigurationError(
			'a PROVISIONED table needs read and write capacity units, either in the table config or from its autoscaling'
		)

	return ddb.CfnTable.ProvisionedThroughputProperty(read_capacity_units=read_units, write_capacity_units=write_units)


def setup_autoscaling(
	scope: Construct,
	prefix: str,
	autoscale_props: TableAutoScaleProps,
	table: ddb.CfnTable,
	capacity_type: TableCapacityType,
	global_secondary_indexes: List[ddb.CfnTable.GlobalSecondaryIndexProperty],
	tags: Dict[str, str],
) -> None:
	"""
	Set up autoscaling of one capacity dimension for the table and its indexes.

	Args:
	    scope: The CDK construct scope
	    prefix: Name prefix of the IAM resources
	    autoscale_props: Target tracking settings of the dimension
	    table: The table to scale
	    capacity_type: The capacity dimension
	    global_secondary_indexes: Indexes of the table, each scaled with its own target
	    tags: Tags for the IAM role
	"""
	role_arn = create_autoscaling_role(scope, capacity_type, prefix, table.attr_arn, tags)

	create_autoscaling_policy(
		scope,
		role_arn,
		'table',
		capacity_type,
		autoscale_props.min_capacity,
		autoscale_props.max_capacity,
		autoscale_props.tracking,
		table,
	)

	for index in global_secondary_indexes:
		# min capacity is defined by the index, max capacity and tracking are inherited from the table
		# TODO: per-index max and tracking need their own fields next to GlobalSecondaryIndexProperty
		create_autoscaling_policy(
			scope,
			role_arn,
			'index',
			capacity_type,
			index_min_capacity(index, capacity_type),
			autoscale_props.max_capacity,
			autoscale_props.tracking,
			table,
			index_name=getattr(index, 'index_name', None),
		)


def validate_index_throughput(global_secondary_indexes: List[ddb.CfnTable.GlobalSecondaryIndexProperty]) -> None:
	"""
	Autoscaled indexes take their minimum capacity from their own provisioned
	throughput, so every index must declare one.

	Raises:
	    ConfigurationError: If an index has no provisioned throughput
	"""
	for index in global_secondary_indexes:
		index_throughput(index)


def index_throughput(index: ddb.CfnTable.GlobalSecondaryIndexProperty) -> ddb.CfnTable.ProvisionedThroughputProperty:
	throughput = getattr(index, 'provisioned_throughput', None)
	if throughput is None:
		raise ConfigurationError(
			f'global secondary index {getattr(index, "index_name", None)} needs a provisioned throughput to be autoscaled'
		)
	return throughput


def index_min_capacity(index: ddb.CfnTable.GlobalSecondaryIndexProperty, capacity_type: TableCapacityType) -> int:
	throughput = index_throughput(index)
	if capacity_type is TableCapacityType.READ:
		return throughput.read_capacity_units
	return throughput.write_capacity_units


def create_autoscaling_policy(
	scope: Construct,
	role_arn: str,
	policy_target: str,
	capacity_type: TableCapacityType,
	min_capacity: int,
	max_capacity: int,
	tracking: float,
	table: ddb.CfnTable,
	index_name: Optional[str] = None,
) -> appscaling.CfnScalableTarget:
	"""
	Create a scalable target and its target tracking policy for a table or an index.

	Args:
	    scope: The CDK construct scope
	    role_arn: Role application autoscaling acts through
	    policy_target: 'table' or 'index'
	    capacity_type: The capacity dimension
	    min_capacity: Lower bound of the capacity
	    max_capacity: Upper bound of the capacity
	    tracking: Target utilization percentage
	    table: The table to scale
	    index_name: Name of the index, required when policy_target is 'index'

	Returns:
	    appscaling.CfnScalableTarget: The scalable target

	Raises:
	    ConfigurationError: If an index policy has no index name
	"""
	resource_id = f'table/{table.ref}'

	# if we're targeting an index, the resource id must reflect that
	if policy_target == 'index':
		if not index_name:
			raise ConfigurationError('you must specify an index_name when creating an index auto scaling policy')
		resource_id += f'/index/{index_name}'

	construct_prefix = f'{index_name or Names.unique_id(table)}_{capacity_type.value}_{policy_target}'
	logger.debug(f'Autoscaling {construct_prefix}: min {min_capacity}, max {max_capacity}, tracking {tracking}')

	scalable_target = appscaling.CfnScalableTarget(
		scope,
		f'{construct_prefix}_target',
		max_capacity=max_capacity,
		min_capacity=min_capacity,
		resource_id=resource_id,
		scalable_dimension=f'dynamodb:{policy_target}:{capacity_type.value}Units',
		role_arn=role_arn,
		service_namespace='dynamodb',
	)
	scalable_target.add_dependency(table)

	scaling_policy = appscaling.CfnScalingPolicy(
		scope,
		f'{construct_prefix}_policy',
		policy_name=f'DynamoDB{capacity_type.value}Utilization:{resource_id}',
		policy_type='TargetTrackingScaling',
		scaling_target_id=scalable_target.ref,
		target_tracking_scaling_policy_configuration=appscaling.CfnScalingPolicy.TargetTrackingScalingPolicyConfigurationProperty(
			predefined_metric_specification=appscaling.CfnScalingPolicy.PredefinedMetricSpecificationProperty(
				predefined_metric_type=f'DynamoDB{capacity_type.value}Utilization',
			),
			target_value=tracking,
		),
	)
	scaling_policy.add_dependency(scalable_target)
	scaling_policy.add_dependency(table)

	return scalable_target


def create_autoscaling_role(
	scope: Construct,
	capacity_type: TableCapacityType,
	prefix: str,
	table_arn: str,
	tags: Dict[str, str],
) -> str:
	"""
	Create the IAM role application autoscaling uses to scale the table.

	Application autoscaling does not accept a custom suffix for a DynamoDB
	service linked role, so a regular role is declared. The service replaces
	it with its account wide DynamoDB autoscaling role when the target is
	registered.

	Args:
	    scope: The CDK construct scope
	    capacity_type: The capacity dimension the role is for
	    prefix: Name prefix of the role and policy
	    table_arn: ARN of the table
	    tags: Tags for the role

	Returns:
	    str: The ARN of the role
	"""
	policy = iam.ManagedPolicy(
		scope,
		f'{capacity_type.value}_autoscaling_policy',
		managed_policy_name=f'{prefix}-{capacity_type.value}-AutoScalingPolicy',
		document=iam.PolicyDocument(
			statements=[
				iam.PolicyStatement(
					effect=iam.Effect.ALLOW,
					actions=[
						'application-autoscaling:*',
						'cloudwatch:DescribeAlarms',
						'cloudwatch:PutMetricAlarm',
					],
					resources=['*'],
				),
				iam.PolicyStatement(
					effect=iam.Effect.ALLOW,
					actions=['dynamodb:DescribeTable', 'dynamodb:UpdateTable'],
					resources=[table_arn, f'{table_arn}*'],
				),
			]
		),
	)
	NagSuppressions.add_resource_suppressions(
		policy,
		[
			{
				'id': 'AwsSolutions-IAM5',
				'reason': 'Application autoscaling and CloudWatch alarms do not support resource-level permissions; '
				'the table wildcard covers its indexes.',
			}
		],
	)

	role = iam.Role(
		scope,
		f'{capacity_type.value}_role',
		role_name=f'{prefix}-{capacity_type.value}-AutoScalingRole',
		assumed_by=iam.ServicePrincipal('application-autoscaling.amazonaws.com'),
		managed_policies=[policy],
	)
	for key, value in tags.items():
		Tags.of(role).add(key=key, value=value)

	return role.role_arn
