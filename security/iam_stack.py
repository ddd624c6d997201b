from aws_cdk import (
    NestedStack,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_rds as rds,
)
from constructs import Construct

class IamStack(NestedStack):

    def __init__(self, scope:Construct, id:str,
                 bastion: ec2.Instance,
                 admin_key_pair: ec2.KeyPair,
                 rds_db: rds.DatabaseInstance,
                 **kwargs) -> None:
        super().__init__(scope, id, **kwargs)


        ### IAM GROUP-OF-USERS  ###

        self.OperatorGroup = iam.Group(
            self, "OperatorGroup",
        )

        self.DatabaseGroup = iam.Group(
            self, "DatabaseGroup",
        )


        ###  IAM POLICIES  ###

        # IAM policy to reach the bastion host.
        self.BastionAccessPolicy = iam.Policy(
            self, "BastionAccessPolicy",
            statements=[
                iam.PolicyStatement(
                    sid="Describe",
                    effect=iam.Effect.ALLOW,
                    actions=[
                        "ec2:DescribeInstances",
                        "ec2:DescribeKeyPairs",
                    ],
                    resources=["*"],
                ),
                # Short lived keys pushed with EC2 Instance Connect, as an alternative to the key pair.
                iam.PolicyStatement(
                    sid="SSHPublicKey",
                    effect=iam.Effect.ALLOW,
                    actions=["ec2-instance-connect:SendSSHPublicKey"],
                    resources=[
                        f"arn:aws:ec2:{self.region}:{self.account}:instance/{bastion.instance_id}"
                    ],
                    conditions={
                        "StringEquals": {
                            "ec2:osuser": "ec2-user"
                        },
                    },
                ),
            ],
        )

        # Private key of the admin key pair lives in SSM Parameter Store.
        admin_key_pair.private_key.grant_read(self.OperatorGroup)

        # Attach policy to OperatorGroup.
        self.BastionAccessPolicy.attach_to_group(self.OperatorGroup)



        # IAM policy for direct database sessions through the bastion.
        self.DatabaseAccessPolicy = iam.Policy(
            self, "DatabaseAccessPolicy",
            statements=[
                iam.PolicyStatement(
                    sid="AllowConnect",
                    actions=[
                        "rds-db:connect",
                    ],
                    effect=iam.Effect.ALLOW,
                    resources=[
                        f"arn:aws:rds-db:{self.region}:{self.account}:dbuser:{rds_db.instance_resource_id}/*"
                    ],
                ),
                iam.PolicyStatement(
                    sid="AllowRead",
                    actions=[
                        "rds:Describe*",
                        "rds:ListTagsForResource",
                    ],
                    effect=iam.Effect.ALLOW,
                    resources=[rds_db.instance_arn],
                ),
            ],
        )

        # Master credentials for maintenance sessions.
        rds_db.secret.grant_read(self.DatabaseGroup)

        # Attach policy to DatabaseGroup.
        self.DatabaseAccessPolicy.attach_to_group(self.DatabaseGroup)
