"""
Application load balancer resources.

This module provides the builder for an application load balancer with:
- A security group open on HTTP and HTTPS
- Optional access logs delivered to an existing or a newly created S3 bucket
"""

import logging
from typing import Dict, List, NamedTuple, Optional

from constructs import Construct
from aws_cdk import (
	Stack,
	Tags,
	Token,
	aws_ec2 as ec2,
	aws_elasticloadbalancingv2 as elbv2,
	aws_iam as iam,
	aws_s3 as s3,
	region_info,
)
from cdk_nag import NagSuppressions

from application_constructs.utils.cfn_utils import prefixed_name, to_cfn_tags
from application_constructs.utils.lifecycle import apply_lifecycle
from application_constructs.utils.validation import ConfigurationError, require_exactly_one

logger = logging.getLogger(__name__)

ALB_SHORT_NAME_MAX_LENGTH = 6
ELB_LOG_DELIVERY_SERVICE = 'logdelivery.elasticloadbalancing.amazonaws.com'
BUCKET_CHOICE_ERROR = (
	'If you are configuring access logs you need to define either an existing bucket or a new one to store the logs'
)


class AccessLogsProps:
	"""
	Access log delivery settings for the load balancer.

	Attributes:
	    existing_bucket (Optional[str]): Name of a pre-configured bucket to deliver logs to
	    bucket (Optional[str]): Name of a bucket to create for the logs
	    prefix (Optional[str]): Key prefix for the log objects, without leading or trailing '/'
	"""

	def __init__(
		self,
		*,
		existing_bucket: Optional[str] = None,
		bucket: Optional[str] = None,
		prefix: Optional[str] = None,
	):
		self.existing_bucket = existing_bucket
		self.bucket = bucket
		self.prefix = prefix
		require_exactly_one(BUCKET_CHOICE_ERROR, existing_bucket=existing_bucket, bucket=bucket)


class ApplicationLoadBalancerProps:
	"""
	Properties for create_application_load_balancer.

	Attributes:
	    prefix (str): Name prefix for the security group and default log prefix
	    alb_short_name (str): Up to 6 characters used as the load balancer name prefix
	    vpc_id (str): VPC the security group is created in
	    subnet_ids (List[str]): Subnets the load balancer is attached to
	    internal (bool): Create an internal load balancer instead of an internet-facing one
	    access_logs (Optional[AccessLogsProps]): Access log delivery, disabled when omitted
	    tags (Dict[str, str]): Tags applied to every resource
	"""

	def __init__(
		self,
		*,
		prefix: str,
		alb_short_name: str,
		vpc_id: str,
		subnet_ids: List[str],
		internal: bool = False,
		access_logs: Optional[AccessLogsProps] = None,
		tags: Optional[Dict[str, str]] = None,
	):
		if not alb_short_name or len(alb_short_name) > ALB_SHORT_NAME_MAX_LENGTH:
			raise ConfigurationError(
				f'alb_short_name must be between 1 and {ALB_SHORT_NAME_MAX_LENGTH} characters, got {alb_short_name!r}'
			)
		self.prefix = prefix
		self.alb_short_name = alb_short_name
		self.vpc_id = vpc_id
		self.subnet_ids = subnet_ids
		self.internal = internal
		self.access_logs = access_logs
		self.tags = tags or {}


class ApplicationLoadBalancerResources(NamedTuple):
	alb: elbv2.CfnLoadBalancer
	security_group: ec2.CfnSecurityGroup


def create_application_load_balancer(
	scope: Construct, construct_id: str, props: ApplicationLoadBalancerProps
) -> ApplicationLoadBalancerResources:
	"""
	Create an application load balancer and its security group.

	When access logs are configured the log prefix and bucket choice are
	validated before the bucket or the load balancer are declared.

	Args:
	    scope: The CDK construct scope
	    construct_id: Identifier of the construct grouping the resources
	    props: Load balancer properties

	Returns:
	    ApplicationLoadBalancerResources: The load balancer and its security group

	Raises:
	    ConfigurationError: If the access log configuration is invalid
	"""
	log_prefix = None
	if props.access_logs is not None:
		log_prefix = resolve_access_logs_prefix(props.prefix, props.access_logs.prefix)

	construct = Construct(scope, construct_id)
	logger.info(f'Creating application load balancer {construct.node.path}')

	security_group = create_alb_security_group(construct, props)

	load_balancer_attributes = []
	log_bucket_policy = None
	if props.access_logs is not None:
		bucket_name, log_bucket_policy = get_or_create_log_bucket(construct, props.access_logs, props.tags)
		load_balancer_attributes = [
			elbv2.CfnLoadBalancer.LoadBalancerAttributeProperty(key='access_logs.s3.enabled', value='true'),
			elbv2.CfnLoadBalancer.LoadBalancerAttributeProperty(key='access_logs.s3.bucket', value=bucket_name),
			elbv2.CfnLoadBalancer.LoadBalancerAttributeProperty(key='access_logs.s3.prefix', value=log_prefix),
		]

	alb = elbv2.CfnLoadBalancer(
		construct,
		'alb',
		name=prefixed_name(construct, props.alb_short_name, max_length=32),
		type='application',
		scheme='internal' if props.internal else 'internet-facing',
		security_groups=[security_group.attr_group_id],
		subnets=props.subnet_ids,
		load_balancer_attributes=load_balancer_attributes or None,
		tags=to_cfn_tags(props.tags),
	)

	# The load balancer checks write access to the bucket when logging is enabled
	if log_bucket_policy is not None:
		alb.node.add_dependency(log_bucket_policy)
	else:
		NagSuppressions.add_resource_suppressions(
			alb,
			[{'id': 'AwsSolutions-ELB2', 'reason': 'Access logs are optional and disabled for this load balancer.'}],
		)

	return ApplicationLoadBalancerResources(alb=alb, security_group=security_group)


def create_alb_security_group(scope: Construct, props: ApplicationLoadBalancerProps) -> ec2.CfnSecurityGroup:
	"""
	Create the security group for the load balancer.

	Allows HTTPS and HTTP from anywhere and all outbound traffic. The group
	name is generated by CloudFormation so that a replacement can be created
	before the old group is removed.
	"""
	name = f'{props.prefix}-HTTP/S Security Group'
	security_group = ec2.CfnSecurityGroup(
		scope,
		'alb_security_group',
		group_description='External security group  (Managed by CDK)',
		vpc_id=props.vpc_id,
		security_group_ingress=[
			ec2.CfnSecurityGroup.IngressProperty(ip_protocol='tcp', from_port=443, to_port=443, cidr_ip='0.0.0.0/0'),
			ec2.CfnSecurityGroup.IngressProperty(ip_protocol='tcp', from_port=80, to_port=80, cidr_ip='0.0.0.0/0'),
		],
		security_group_egress=[
			ec2.CfnSecurityGroup.EgressProperty(
				ip_protocol='-1', from_port=0, to_port=0, cidr_ip='0.0.0.0/0', description='required'
			),
		],
		tags=to_cfn_tags(props.tags, Name=name),
	)
	apply_lifecycle(security_group, create_before_destroy=True)

	NagSuppressions.add_resource_suppressions(
		security_group,
		[{'id': 'AwsSolutions-EC23', 'reason': 'The load balancer serves public HTTP and HTTPS traffic.'}],
	)
	return security_group


def resolve_access_logs_prefix(prefix: str, log_prefix: Optional[str]) -> str:
	"""
	Return the access log key prefix, defaulting to server-logs/<prefix>/alb.

	Raises:
	    ConfigurationError: If the prefix starts or ends with '/'
	"""
	resolved = log_prefix if log_prefix is not None else f'server-logs/{prefix.lower()}/alb'
	if resolved.startswith('/') or resolved.endswith('/'):
		raise ConfigurationError("Logs prefix cannot start or end with '/'")
	logger.debug(f'Access logs prefix: {resolved}')
	return resolved


def get_or_create_log_bucket(scope: Construct, access_logs: AccessLogsProps, tags: Dict[str, str]):
	"""
	Resolve the bucket that receives the load balancer access logs.

	An existing bucket is only referenced by name and is expected to carry
	the required bucket policy already. A new bucket is created together with
	a policy that lets Elastic Load Balancing of the region write to it,
	see https://docs.aws.amazon.com/elasticloadbalancing/latest/application/enable-access-logging.html

	Args:
	    scope: The CDK construct scope
	    access_logs: Access log settings
	    tags: Tags for a newly created bucket

	Returns:
	    Tuple of the bucket name and the bucket policy (None for an existing bucket)

	Raises:
	    ConfigurationError: If neither or both of existing_bucket and bucket are set
	"""
	choice = require_exactly_one(
		BUCKET_CHOICE_ERROR, existing_bucket=access_logs.existing_bucket, bucket=access_logs.bucket
	)

	if choice == 'existing_bucket':
		logger.info(f'Delivering access logs to existing bucket {access_logs.existing_bucket}')
		return s3.Bucket.from_bucket_name(scope, 'log-bucket', access_logs.existing_bucket).bucket_name, None

	bucket = s3.Bucket(
		scope,
		'log-bucket',
		bucket_name=access_logs.bucket,
		block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
		encryption=s3.BucketEncryption.S3_MANAGED,
		enforce_ssl=True,
	)
	for key, value in tags.items():
		Tags.of(bucket).add(key=key, value=value)

	bucket.add_to_resource_policy(
		iam.PolicyStatement(
			principals=[elb_log_delivery_principal(scope)],
			actions=['s3:PutObject'],
			resources=[bucket.arn_for_objects('*')],
		)
	)
	NagSuppressions.add_resource_suppressions(
		bucket,
		[{'id': 'AwsSolutions-S1', 'reason': 'This bucket is the access log destination itself.'}],
	)
	logger.info(f'Created access log bucket {access_logs.bucket}')

	return bucket.bucket_name, bucket.policy


def elb_log_delivery_principal(scope: Construct) -> iam.IPrincipal:
	"""
	Return the principal Elastic Load Balancing delivers access logs as.

	Regions opened before August 2022 deliver from a regional ELB account.
	Newer regions have no such account and deliver through the log delivery
	service principal instead. For an environment agnostic stack the account
	is looked up from a region mapping at deploy time.
	"""
	region = Stack.of(scope).region
	if Token.is_unresolved(region):
		return iam.AccountPrincipal(Stack.of(scope).regional_fact(region_info.FactName.ELBV2_ACCOUNT))

	elb_account_id = region_info.RegionInfo.get(region).elbv2_account
	if elb_account_id is None:
		logger.debug(f'No ELB account in {region}, using {ELB_LOG_DELIVERY_SERVICE}')
		return iam.ServicePrincipal(ELB_LOG_DELIVERY_SERVICE)
	return iam.AccountPrincipal(elb_account_id)
