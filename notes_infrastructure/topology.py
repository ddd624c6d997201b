"""Network topology for the notes three-tier deployment.

The security rule table, the subnet layout and the route table are kept here as
plain data so they can be versioned, reviewed and evaluated without
synthesizing a stack. NotesInfrastructureStack applies these tables as-is.
"""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class TopologyError(ValueError):
    """Raised when topology inputs are invalid."""


class Tier(str, Enum):
    """A network identity. Each tier owns exactly one security group."""

    EDGE = "edge"
    APPLICATION = "application"
    STORE = "store"
    BASTION = "bastion"


class SubnetKind(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    ISOLATED = "isolated"


class RouteTarget(str, Enum):
    INTERNET_GATEWAY = "internet-gateway"
    NAT_GATEWAY = "nat-gateway"
    LOCAL = "local"


ANYWHERE = "0.0.0.0/0"
OPERATOR = "operator"  # Replaced by the deployment's operator_cidr.

VPC_CIDR = "10.0.0.0/20"  # A /20 gives 4096 addresses to work with.
MAX_AZS = 2

APP_PORT = 5000
DB_PORT = 3306
SSH_PORT = 22
HTTP_PORT = 80
HTTPS_PORT = 443
EPHEMERAL_PORTS = (1024, 65535)


@dataclass(frozen=True)
class SubnetGroup:
    name: str
    kind: SubnetKind
    cidr_mask: int

    @property
    def is_public(self) -> bool:
        """Resources in public subnets receive externally routable addresses."""
        return self.kind is SubnetKind.PUBLIC


@dataclass(frozen=True)
class SecurityRule:
    name: str
    source: Union[str, Tier]
    destination: Tier
    ports: tuple
    protocol: str = "tcp"
    description: str = ""

    def matches_port(self, port: int, protocol: str) -> bool:
        return protocol.lower() == self.protocol and port in self.ports


@dataclass(frozen=True)
class EgressRule:
    name: str
    source: Tier
    destination: str
    ports: tuple
    protocol: str = "tcp"
    description: str = ""


@dataclass(frozen=True)
class RouteTableEntry:
    subnet_group: str
    destination_cidr: str
    target: RouteTarget


INGRESS = SubnetGroup("Ingress", SubnetKind.PUBLIC, 25)
APPLICATION = SubnetGroup("Application", SubnetKind.PRIVATE, 23)
DATABASE = SubnetGroup("Database", SubnetKind.ISOLATED, 24)

SUBNET_GROUPS = (INGRESS, APPLICATION, DATABASE)

# CIDR ranges CDK allocates for the groups above inside VPC_CIDR, AZ1 then AZ2.
SUBNET_CIDRS = {
    INGRESS.name: ("10.0.0.0/25", "10.0.0.128/25"),
    APPLICATION.name: ("10.0.2.0/23", "10.0.4.0/23"),
    DATABASE.name: ("10.0.6.0/24", "10.0.7.0/24"),
}

# Subnet group each tier is placed in.
TIER_PLACEMENT = {
    Tier.EDGE: INGRESS.name,
    Tier.BASTION: INGRESS.name,
    Tier.APPLICATION: APPLICATION.name,
    Tier.STORE: DATABASE.name,
}


SECURITY_RULES = (
    SecurityRule(
        "PublicIngress", ANYWHERE, Tier.EDGE, (HTTP_PORT, HTTPS_PORT),
        description="Inbound HTTP/HTTPS traffic from anywhere",
    ),
    SecurityRule(
        "AdminSsh", OPERATOR, Tier.BASTION, (SSH_PORT,),
        description="Inbound SSH traffic from the operator",
    ),
    SecurityRule(
        "AppTraffic", Tier.EDGE, Tier.APPLICATION, (APP_PORT,),
        description="Inbound app traffic from the edge tier",
    ),
    SecurityRule(
        "DbFromApp", Tier.APPLICATION, Tier.STORE, (DB_PORT,),
        description="Inbound MySQL traffic from the application tier",
    ),
    SecurityRule(
        "DbFromBastion", Tier.BASTION, Tier.STORE, (DB_PORT,),
        description="Inbound MySQL traffic from the bastion",
    ),
    # nginx forwards to the internal ALB, which shares the edge security group.
    SecurityRule(
        "EdgeTierInternal", Tier.EDGE, Tier.EDGE, (HTTP_PORT,),
        description="Inbound HTTP traffic from the edge proxy to the load balancer",
    ),
)

EGRESS_RULES = (
    EgressRule(
        "EdgeToInternet", Tier.EDGE, ANYWHERE, (HTTP_PORT, HTTPS_PORT),
        description="Outbound HTTP/HTTPS for ACME validation and packages",
    ),
    EgressRule(
        "AppToInternet", Tier.APPLICATION, ANYWHERE, (HTTPS_PORT,),
        description="Outbound HTTPS through NatGateway for image pulls and secrets",
    ),
    # HTTPS only: port 80 to anywhere would also reach the internal ALB in SG_Edge.
    EgressRule(
        "BastionToInternet", Tier.BASTION, ANYWHERE, (HTTPS_PORT,),
        description="Outbound HTTPS for packages",
    ),
)

ROUTES = (
    RouteTableEntry(INGRESS.name, VPC_CIDR, RouteTarget.LOCAL),
    RouteTableEntry(INGRESS.name, ANYWHERE, RouteTarget.INTERNET_GATEWAY),
    RouteTableEntry(APPLICATION.name, VPC_CIDR, RouteTarget.LOCAL),
    RouteTableEntry(APPLICATION.name, ANYWHERE, RouteTarget.NAT_GATEWAY),
    RouteTableEntry(DATABASE.name, VPC_CIDR, RouteTarget.LOCAL),
)


def validate_operator_cidr(cidr: Optional[str]) -> str:
    """Return the operator CIDR if it names exactly one IPv4 host."""
    if not cidr:
        raise TopologyError("operator_cidr is required")
    try:
        network = ipaddress.IPv4Network(cidr, strict=True)
    except ValueError as e:
        raise TopologyError(f"Invalid operator_cidr {cidr!r}: {e}") from e
    if network.num_addresses != 1:
        raise TopologyError(
            f"operator_cidr must be a single host (/32), got {cidr!r}"
        )
    return str(network)


def resolve_source(source: Union[str, Tier], operator_cidr: Optional[str] = None) -> Union[str, Tier]:
    """Replace the OPERATOR placeholder with the operator's CIDR."""
    if source == OPERATOR:
        return validate_operator_cidr(operator_cidr)
    return source


def rules_for(destination: Tier) -> list:
    return [rule for rule in SECURITY_RULES if rule.destination is destination]


def egress_rules_for(source: Tier) -> list:
    return [rule for rule in EGRESS_RULES if rule.source is source]


def _tier_networks(tier: Tier) -> list:
    """Address ranges members of ``tier`` can hold."""
    return [ipaddress.IPv4Network(cidr) for cidr in SUBNET_CIDRS[TIER_PLACEMENT[tier]]]


def _covers(cidr: str, networks: list) -> bool:
    outer = ipaddress.IPv4Network(cidr)
    return all(network.subnet_of(outer) for network in networks)


def _egress_allowed(source: Tier, destination: Tier, port: int, protocol: str) -> bool:
    for rule in egress_rules_for(source):
        if protocol.lower() != rule.protocol or port not in rule.ports:
            continue
        if _covers(rule.destination, _tier_networks(destination)):
            return True
    return False


def is_flow_allowed(source, destination, port: int, protocol: str = "tcp",
                    operator_cidr: Optional[str] = None) -> bool:
    """Evaluate a flow against SECURITY_RULES and EGRESS_RULES.

    ``source`` is either a Tier (traffic from that security group) or an IPv4
    address (traffic from outside any security group). Anything not matched by
    a rule is denied.

    CIDR rules admit security group members too, so a Tier source is matched
    against them through the subnets it is placed in. Security group egress is
    allow-listed as well: a Tier source must also have an egress rule for the
    flow, except for Tier-to-Tier rules, which open both directions.
    """
    destination = Tier(destination)
    if isinstance(source, Tier):
        source_address = None
    else:
        try:
            source = Tier(source)
            source_address = None
        except ValueError:
            try:
                source_address = ipaddress.IPv4Address(source)
            except ValueError as e:
                raise TopologyError(f"Unknown flow source {source!r}") from e

    for rule in rules_for(destination):
        if not rule.matches_port(port, protocol):
            continue
        if isinstance(rule.source, Tier):
            if source_address is None and rule.source is source:
                return True
            continue
        if rule.source == OPERATOR and not operator_cidr:
            continue
        cidr = resolve_source(rule.source, operator_cidr)
        if source_address is not None:
            if source_address in ipaddress.IPv4Network(cidr):
                return True
        elif _covers(cidr, _tier_networks(source)):
            if _egress_allowed(source, destination, port, protocol):
                return True
    return False


def default_route(subnet_group: str) -> Optional[RouteTableEntry]:
    """Return the 0.0.0.0/0 route for a subnet group, or None when isolated."""
    if subnet_group not in SUBNET_CIDRS:
        raise TopologyError(f"Unknown subnet group {subnet_group!r}")
    for entry in ROUTES:
        if entry.subnet_group == subnet_group and entry.destination_cidr == ANYWHERE:
            return entry
    return None


def database_nacl_peers() -> tuple:
    """CIDRs allowed through the database NACL: every subnet a store client lives in."""
    clients = [rule.source for rule in rules_for(Tier.STORE) if isinstance(rule.source, Tier)]
    groups = []
    for tier in clients:
        group = TIER_PLACEMENT[tier]
        if group not in groups:
            groups.append(group)
    return tuple(cidr for group in groups for cidr in SUBNET_CIDRS[group])
