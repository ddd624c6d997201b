from dataclasses import dataclass
from typing import Optional

from aws_cdk import (
    Stack,
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_elasticloadbalancingv2 as elbv2,
    aws_logs as logs,
    aws_rds as rds,
    aws_route53 as route53,
    aws_secretsmanager as secretsmanager,
    CfnOutput,
    CfnTag,
    Duration,
    RemovalPolicy,
)
from constructs import Construct

from notes_infrastructure import topology
from notes_infrastructure.edge_proxy import render_user_data
from notes_infrastructure.topology import Tier, TopologyError
from security.iam_stack import IamStack


SUBNET_TYPES = {
    topology.SubnetKind.PUBLIC: ec2.SubnetType.PUBLIC,
    topology.SubnetKind.PRIVATE: ec2.SubnetType.PRIVATE_WITH_EGRESS,
    topology.SubnetKind.ISOLATED: ec2.SubnetType.PRIVATE_ISOLATED,
}

DATABASE_NAME = "notes"
DATABASE_USER = "notes_admin"
CONTAINER_NAME = "notes-app"
MIGRATION_COMMAND = ["alembic", "upgrade", "head"]


@dataclass(frozen=True)
class NotesDeploymentProps:
    """Deployment inputs for NotesInfrastructureStack.

    Attributes:
        operator_cidr: The single host (/32) allowed to SSH into the bastion.
        domain_name: Public name the edge proxy obtains its certificate for.
        acme_email: Contact address registered with Let's Encrypt.
        container_image: Image URI of the notes application.
        hosted_zone_id: Route 53 zone to publish domain_name in (optional).
        hosted_zone_name: Name of that zone; required with hosted_zone_id.
        desired_count: Minimum number of application tasks.
        max_count: Upper bound for CPU based scaling.
    """

    operator_cidr: str
    domain_name: str
    acme_email: str
    container_image: str
    hosted_zone_id: Optional[str] = None
    hosted_zone_name: Optional[str] = None
    desired_count: int = 2
    max_count: int = 4

    def __post_init__(self):
        object.__setattr__(
            self, "operator_cidr", topology.validate_operator_cidr(self.operator_cidr)
        )
        if not self.container_image:
            raise TopologyError("container_image is required")
        if self.desired_count < 1 or self.max_count < self.desired_count:
            raise TopologyError(
                f"Invalid task counts: desired={self.desired_count} max={self.max_count}"
            )
        if bool(self.hosted_zone_id) != bool(self.hosted_zone_name):
            raise TopologyError("hosted_zone_id and hosted_zone_name must be given together")


def _port(protocol: str, port: int) -> ec2.Port:
    if protocol == "udp":
        return ec2.Port.udp(port)
    return ec2.Port.tcp(port)


class NotesInfrastructureStack(Stack):

    def __init__(self, scope: Construct, construct_id: str,
                 props: NotesDeploymentProps, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.props = props

        # Create VPC.
        self.vpc = ec2.Vpc(
            self, "VPC",
            ip_addresses=ec2.IpAddresses.cidr(topology.VPC_CIDR),
            create_internet_gateway=True,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            max_azs=topology.MAX_AZS,
            nat_gateways=topology.MAX_AZS, # One NAT Gateway per AZ for private egress.
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    cidr_mask=group.cidr_mask,
                    name=group.name,
                    subnet_type=SUBNET_TYPES[group.kind],
                )
                for group in topology.SUBNET_GROUPS
            ],
        )


        ###  NETWORK ACCESS CONTROL LISTS  ###

        # Database subnets only talk MySQL with the subnets of their clients.
        self.databaseAcl = ec2.NetworkAcl(
            self, "DatabaseSubnetNacl",
            vpc=self.vpc,
            network_acl_name="DatabaseSubnetNACL",
            subnet_selection=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
        )
        self._add_database_acl_entries()


        ###  SECURITY GROUPS  ###

        self.security_groups = {
            Tier.EDGE: self._security_group("SG_Edge", "Security Group for edge proxy and internal ALB"),
            Tier.APPLICATION: self._security_group("SG_Application", "Security Group for application tasks"),
            Tier.STORE: self._security_group("SG_Store", "Security Group for RDS database"),
            Tier.BASTION: self._security_group("SG_Bastion", "Security Group for bastion host"),
        }
        self._apply_security_rules()


        ###  KEY PAIR, BASTION HOST  ###

        # Key pair for the bastion. CDK stores the private key in SSM Parameter Store.
        self.admin_key_pair = ec2.KeyPair(
            self, "AdminKeyPair",
            key_pair_name=f"{construct_id}-admin",
            type=ec2.KeyPairType.RSA,
            format=ec2.KeyPairFormat.PEM,
        )

        bastion_user_data = ec2.UserData.for_linux()
        bastion_user_data.add_commands("dnf install -y mariadb105")

        self.bastion = ec2.Instance(
            self, "BastionHost",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            instance_type=ec2.InstanceType("t3.micro"),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(),
            security_group=self.security_groups[Tier.BASTION],
            key_pair=self.admin_key_pair,
            require_imdsv2=True,
            user_data=bastion_user_data,
        )


        ###  RDS DATABASE  ###

        # Multi-AZ: RDS keeps a synchronous standby in the second AZ and fails over to it.
        self.database = rds.DatabaseInstance(
            self, "NotesDatabase",
            engine=rds.DatabaseInstanceEngine.mysql(version=rds.MysqlEngineVersion.VER_8_0),
            instance_type=ec2.InstanceType.of(ec2.InstanceClass.BURSTABLE3, ec2.InstanceSize.MICRO),
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            security_groups=[self.security_groups[Tier.STORE]],
            credentials=rds.Credentials.from_generated_secret(DATABASE_USER),
            database_name=DATABASE_NAME,
            port=topology.DB_PORT,
            multi_az=True,
            publicly_accessible=False,
            iam_authentication=True,
            storage_encrypted=True,
            storage_type=rds.StorageType.GP3,
            allocated_storage=20,
            max_allocated_storage=100,
            backup_retention=Duration.days(7),
            delete_automated_backups=True,
            deletion_protection=False,
            removal_policy=RemovalPolicy.SNAPSHOT,
        )

        # Flask secret key, injected into the tasks at runtime.
        self.app_secret_key = secretsmanager.Secret(
            self, "AppSecretKey",
            description="Secret key for the notes application",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=64,
                exclude_punctuation=True,
            ),
        )


        ###  ECS CLUSTER, TASK DEFINITIONS  ###

        self.cluster = ecs.Cluster(
            self, "Cluster",
            vpc=self.vpc,
        )

        self.log_group = logs.LogGroup(
            self, "AppLogGroup",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.task_definition = ecs.FargateTaskDefinition(
            self, "AppTaskDefinition",
            cpu=256,
            memory_limit_mib=512,
        )
        self._add_app_container(self.task_definition, port_mappings=[
            ecs.PortMapping(container_port=topology.APP_PORT, protocol=ecs.Protocol.TCP),
        ])

        # Schema migrations run once per deployment as a one-off task, never at app startup.
        self.migration_task_definition = ecs.FargateTaskDefinition(
            self, "MigrationTaskDefinition",
            cpu=256,
            memory_limit_mib=512,
        )
        self._add_app_container(self.migration_task_definition, command=MIGRATION_COMMAND)


        ###   APPLICATION LOAD BALANCER, TARGET GROUP, LISTENER, SERVICE  ###

        # Internal ALB. Only the edge proxy reaches it; it shares SG_Edge with it.
        self.alb = elbv2.ApplicationLoadBalancer(
            self, "ALB",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            internet_facing=False,
            http2_enabled=True,
            cross_zone_enabled=True,
            security_group=self.security_groups[Tier.EDGE],
            preserve_host_header=True,
            preserve_xff_client_port=True,
            xff_header_processing_mode=elbv2.XffHeaderProcessingMode.APPEND,
            ip_address_type=elbv2.IpAddressType.IPV4,
            idle_timeout=Duration.seconds(60),
            desync_mitigation_mode=elbv2.DesyncMitigationMode.DEFENSIVE,
            drop_invalid_header_fields=True,
        )

        self.targetgroup = elbv2.ApplicationTargetGroup(
            self, "TargetGroup",
            vpc=self.vpc,
            load_balancing_algorithm_type=elbv2.TargetGroupLoadBalancingAlgorithmType.ROUND_ROBIN,
            port=topology.APP_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            target_type=elbv2.TargetType.IP,
            deregistration_delay=Duration.seconds(30),
            health_check=elbv2.HealthCheck(
                path="/health",
                protocol=elbv2.Protocol.HTTP,
                healthy_http_codes="200",
                healthy_threshold_count=2,
                unhealthy_threshold_count=3,
                timeout=Duration.seconds(5),
                interval=Duration.seconds(30),
            ),
        )

        # Listener stays closed; SG_Edge rules decide who may connect.
        self.listener = self.alb.add_listener(
            "HttpListener",
            port=topology.HTTP_PORT,
            protocol=elbv2.ApplicationProtocol.HTTP,
            default_action=elbv2.ListenerAction.forward(target_groups=[self.targetgroup]),
            open=False,
        )

        self.service = ecs.FargateService(
            self, "AppService",
            cluster=self.cluster,
            task_definition=self.task_definition,
            desired_count=props.desired_count,
            security_groups=[self.security_groups[Tier.APPLICATION]],
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            assign_public_ip=False,
            min_healthy_percent=100,
            health_check_grace_period=Duration.seconds(60),
            circuit_breaker=ecs.DeploymentCircuitBreaker(rollback=True),
        )
        # Register the service as a target to TG.
        self.targetgroup.add_target(self.service)

        # Target tracking on CPU, same thresholds as the EC2 fleet it replaces.
        self.scaling = self.service.auto_scale_task_count(
            min_capacity=props.desired_count,
            max_capacity=props.max_count,
        )
        self.scaling.scale_on_cpu_utilization(
            "CPUScaling",
            target_utilization_percent=40,
            scale_in_cooldown=Duration.minutes(4),
            scale_out_cooldown=Duration.minutes(4),
        )


        ###  EDGE PROXY  ###

        self.edge_proxy = ec2.Instance(
            self, "EdgeProxy",
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            instance_type=ec2.InstanceType("t3.micro"),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(),
            security_group=self.security_groups[Tier.EDGE],
            require_imdsv2=True,
            user_data=ec2.UserData.custom(render_user_data(
                domain_name=props.domain_name,
                acme_email=props.acme_email,
                upstream_host=self.alb.load_balancer_dns_name,
                upstream_port=topology.HTTP_PORT,
            )),
            user_data_causes_replacement=True,
        )

        # Stable address for the DNS record and ACME validation.
        self.edge_proxy_eip = ec2.CfnEIP(
            self, "EdgeProxyEip",
            domain="vpc",
            instance_id=self.edge_proxy.instance_id,
            tags=[CfnTag(key="Name", value="EdgeProxy")],
        )


        ### ROUTE 53  ###

        if props.hosted_zone_id:
            self.record = route53.ARecord(
                self, "EdgeProxyRecord",
                zone=route53.HostedZone.from_hosted_zone_attributes(
                    self, "HostedZone",
                    hosted_zone_id=props.hosted_zone_id,
                    zone_name=props.hosted_zone_name,
                ),
                record_name=props.domain_name,
                target=route53.RecordTarget.from_ip_addresses(self.edge_proxy_eip.attr_public_ip),
                ttl=Duration.minutes(5),
            )
            self.record.apply_removal_policy(RemovalPolicy.DESTROY)


        ### NESTED STACKS ###

        # Nested IAM stack.
        self.iam_stack = IamStack(
            self, "IamNestedStack",
            bastion=self.bastion,
            admin_key_pair=self.admin_key_pair,
            rds_db=self.database,
        )


        ###  OUTPUTS  ###

        CfnOutput(self, "EdgeProxyPublicIp", value=self.edge_proxy_eip.attr_public_ip)
        CfnOutput(self, "BastionPublicIp", value=self.bastion.instance_public_ip)
        CfnOutput(self, "LoadBalancerDnsName", value=self.alb.load_balancer_dns_name)
        CfnOutput(self, "DatabaseEndpoint", value=self.database.db_instance_endpoint_address)
        CfnOutput(self, "DatabaseSecretArn", value=self.database.secret.secret_arn)
        CfnOutput(self, "MigrationTaskDefinitionArn",
                  value=self.migration_task_definition.task_definition_arn)
        CfnOutput(self, "AdminKeyPairParameter",
                  value=self.admin_key_pair.private_key.parameter_name)


    def _security_group(self, name: str, description: str) -> ec2.SecurityGroup:
        # Egress is allow-listed like ingress.
        return ec2.SecurityGroup(
            self, name,
            vpc=self.vpc,
            allow_all_outbound=False,
            description=description,
            security_group_name=name,
        )


    def _apply_security_rules(self) -> None:
        for rule in topology.SECURITY_RULES:
            destination = self.security_groups[rule.destination]
            for port in rule.ports:
                if isinstance(rule.source, Tier):
                    # Adds the matching egress rule on the source group as well.
                    destination.connections.allow_from(
                        self.security_groups[rule.source],
                        _port(rule.protocol, port),
                        rule.description,
                    )
                else:
                    destination.add_ingress_rule(
                        peer=ec2.Peer.ipv4(topology.resolve_source(rule.source, self.props.operator_cidr)),
                        connection=_port(rule.protocol, port),
                        description=rule.description,
                    )

        for tier, group in self.security_groups.items():
            for rule in topology.egress_rules_for(tier):
                for port in rule.ports:
                    group.add_egress_rule(
                        peer=ec2.Peer.ipv4(rule.destination),
                        connection=_port(rule.protocol, port),
                        description=rule.description,
                    )


    def _add_database_acl_entries(self) -> None:
        low, high = topology.EPHEMERAL_PORTS

        for index, cidr in enumerate(topology.database_nacl_peers()):
            # MySQL from store clients.
            self.databaseAcl.add_entry(
                f"IngressMySQL{index}",
                cidr=ec2.AclCidr.ipv4(cidr),
                rule_number=100 + index * 20,
                traffic=ec2.AclTraffic.tcp_port(topology.DB_PORT),
                direction=ec2.TrafficDirection.INGRESS,
                rule_action=ec2.Action.ALLOW,
            )
            # Ephemeral ports for return traffic.
            self.databaseAcl.add_entry(
                f"EgressEphemeral{index}",
                cidr=ec2.AclCidr.ipv4(cidr),
                rule_number=100 + index * 20,
                traffic=ec2.AclTraffic.tcp_port_range(low, high),
                direction=ec2.TrafficDirection.EGRESS,
                rule_action=ec2.Action.ALLOW,
            )

        # DB traffic between the primary and its standby.
        for index, cidr in enumerate(topology.SUBNET_CIDRS[topology.DATABASE.name]):
            for direction, label in ((ec2.TrafficDirection.INGRESS, "Ingress"),
                                     (ec2.TrafficDirection.EGRESS, "Egress")):
                self.databaseAcl.add_entry(
                    f"{label}StandbyMySQL{index}",
                    cidr=ec2.AclCidr.ipv4(cidr),
                    rule_number=300 + index * 20,
                    traffic=ec2.AclTraffic.tcp_port(topology.DB_PORT),
                    direction=direction,
                    rule_action=ec2.Action.ALLOW,
                )


    def _add_app_container(self, task_definition: ecs.FargateTaskDefinition,
                           command: Optional[list] = None,
                           port_mappings: Optional[list] = None) -> ecs.ContainerDefinition:
        db_secret = self.database.secret
        return task_definition.add_container(
            CONTAINER_NAME,
            image=ecs.ContainerImage.from_registry(self.props.container_image),
            command=command,
            logging=ecs.LogDrivers.aws_logs(
                stream_prefix=CONTAINER_NAME,
                log_group=self.log_group,
            ),
            environment={
                "NOTES_LOG_LEVEL": "INFO",
                "NOTES_SERVER_BIND": f"0.0.0.0:{topology.APP_PORT}",
            },
            secrets={
                "NOTES_DATABASE_HOST": ecs.Secret.from_secrets_manager(db_secret, field="host"),
                "NOTES_DATABASE_PORT": ecs.Secret.from_secrets_manager(db_secret, field="port"),
                "NOTES_DATABASE_NAME": ecs.Secret.from_secrets_manager(db_secret, field="dbname"),
                "NOTES_DATABASE_USER": ecs.Secret.from_secrets_manager(db_secret, field="username"),
                "NOTES_DATABASE_PASSWORD": ecs.Secret.from_secrets_manager(db_secret, field="password"),
                "NOTES_SECRET_KEY": ecs.Secret.from_secrets_manager(self.app_secret_key),
            },
            port_mappings=port_mappings,
        )
