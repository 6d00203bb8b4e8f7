"""Tests for the resource graph builder."""

import pytest

from stackgraph.errors import (
    CyclicDependencyError,
    DanglingReferenceError,
    DeclarationError,
    DuplicateResourceError,
    InputValidationError,
)
from stackgraph.output import Output
from stackgraph.programs import fargate_service
from stackgraph.resources import NodeState, ResourceKind, aws
from stackgraph.scheduler.graph import ResourceGraph
from stackgraph.secrets import RegistryTokenSource
from stackgraph.stack import StackContext


def _vpc(graph, name="vpc"):
    return aws.network(graph, name, cidr_block="10.0.0.0/16")


class TestDeclaration:
    def test_reference_creates_edge(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        sg = aws.security_group(graph, "sg", vpc_id=vpc.output("vpc_id"))

        assert graph.dependencies_of("sg") == {"vpc"}
        assert graph.dependents_of("vpc") == {"sg"}
        assert sg.dependencies == frozenset({"vpc"})
        edge = next(iter(graph.edges))
        assert (edge.from_name, edge.to_name, edge.edge_type) == ("vpc", "sg", "reference")

    def test_explicit_depends_on(self):
        graph = ResourceGraph()
        repo = aws.repository(graph, "repo")
        aws.log_group(graph, "logs", depends_on=[repo])

        assert graph.dependencies_of("logs") == {"repo"}
        assert next(iter(graph.edges)).edge_type == "explicit"

    def test_duplicate_name_rejected(self):
        graph = ResourceGraph()
        _vpc(graph)
        with pytest.raises(DuplicateResourceError):
            _vpc(graph)

    def test_reference_to_undeclared_resource(self):
        other = ResourceGraph()
        vpc = _vpc(other)

        graph = ResourceGraph()
        with pytest.raises(DanglingReferenceError) as exc_info:
            aws.security_group(graph, "sg", vpc_id=vpc.output("vpc_id"))

        assert exc_info.value.missing == "vpc"
        assert "sg" not in graph

    def test_same_name_in_another_graph_is_not_bound(self):
        other = ResourceGraph()
        foreign_vpc = _vpc(other)

        graph = ResourceGraph()
        _vpc(graph)
        with pytest.raises(DanglingReferenceError) as exc_info:
            aws.security_group(
                graph, "sg", vpc_id=foreign_vpc.output("vpc_id").map(lambda v: v)
            )

        assert exc_info.value.missing == "vpc"
        assert "another graph" in str(exc_info.value)
        assert "sg" not in graph

    def test_derived_outputs_of_own_nodes_are_accepted(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        subnets = Output.combine(vpc.output("vpc_id"), vpc.output("public_subnet_ids"))
        alb = aws.load_balancer(graph, "alb", subnets=subnets.map(lambda pair: pair[1]))
        assert graph.dependencies_of("alb") == {"vpc"}
        assert alb.dependencies == {"vpc"}

    def test_self_reference_is_a_cycle(self):
        graph = ResourceGraph()
        forged = Output(name="sg.id", resources={"sg"})
        with pytest.raises(CyclicDependencyError):
            aws.security_group(graph, "sg", vpc_id=forged)

    def test_closing_a_cycle_is_rejected(self):
        graph = ResourceGraph()
        repo = aws.repository(graph, "repo")
        aws.log_group(graph, "logs", depends_on=[repo])

        with pytest.raises(CyclicDependencyError) as exc_info:
            graph.add_dependency("logs", "repo")

        assert isinstance(exc_info.value, DeclarationError)
        assert exc_info.value.cycle == ["repo", "logs", "repo"]
        assert graph.dependencies_of("repo") == set()

    def test_unknown_input_field(self):
        graph = ResourceGraph()
        with pytest.raises(InputValidationError):
            graph.declare("vpc", ResourceKind.NETWORK, {"cidr_block": "10.0.0.0/16", "colour": 1})

    def test_missing_required_input(self):
        graph = ResourceGraph()
        with pytest.raises(InputValidationError, match="required"):
            graph.declare("vpc", ResourceKind.NETWORK, {})

    def test_invalid_literal_value(self):
        graph = ResourceGraph()
        with pytest.raises(InputValidationError, match="valid CIDR block"):
            aws.network(graph, "vpc", cidr_block="not-a-cidr")

    def test_bool_is_not_an_int(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        with pytest.raises(InputValidationError):
            aws.target_group(graph, "tg", port=True, vpc_id=vpc.output("vpc_id"))

    def test_defaults_are_applied(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        assert vpc.inputs["availability_zones"] == 2
        assert vpc.inputs["subnet_strategy"] == "Auto"

    def test_physical_names_are_passed_as_inputs(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        alb = aws.load_balancer(
            graph, "alb", lb_name="web-alb", subnets=vpc.output("public_subnet_ids")
        )
        repo = aws.repository(graph, "repo", repository_name="web-app-repository")
        logs = aws.log_group(graph, "logs", log_group_name="/app/web")
        cluster = aws.cluster(graph, "cluster", cluster_name="web")
        exec_role = aws.role(
            graph, "exec-role", role_name="web-exec", assume_role_policy="{}"
        )

        assert alb.inputs["name"] == "web-alb"
        assert repo.inputs["name"] == "web-app-repository"
        assert logs.inputs["name"] == "/app/web"
        assert cluster.inputs["name"] == "web"
        assert exec_role.inputs["name"] == "web-exec"
        assert aws.repository(graph, "plain").inputs["name"] == "plain"

    def test_unknown_output_field(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        with pytest.raises(DeclarationError, match="no output"):
            vpc.output("dns_name")


class TestOrdering:
    def _fargate_graph(self):
        ctx = StackContext("test", ResourceGraph(), RegistryTokenSource())
        fargate_service.program(ctx)
        return ctx.graph

    def test_topological_order_respects_every_edge(self):
        graph = self._fargate_graph()
        order = graph.topological_order()

        assert sorted(order) == sorted(graph.nodes)
        for edge in graph.edges:
            assert order.index(edge.from_name) < order.index(edge.to_name)

    def test_independent_resources_keep_declaration_order(self):
        graph = ResourceGraph()
        aws.repository(graph, "repo")
        aws.log_group(graph, "logs")
        assert graph.topological_order() == ["repo", "logs"]

    def test_parallel_levels(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        sg = aws.security_group(graph, "sg", vpc_id=vpc.output("vpc_id"))
        aws.load_balancer(
            graph, "alb", subnets=vpc.output("public_subnet_ids"), security_groups=[sg.id]
        )
        aws.repository(graph, "repo")

        assert graph.parallel_levels() == [["vpc", "repo"], ["sg"], ["alb"]]

    def test_ready_nodes_are_roots(self):
        graph = ResourceGraph()
        vpc = _vpc(graph)
        aws.security_group(graph, "sg", vpc_id=vpc.output("vpc_id"))
        aws.repository(graph, "repo")

        assert [node.name for node in graph.ready_nodes()] == ["vpc", "repo"]

    def test_mark_planned(self):
        graph = self._fargate_graph()
        graph.mark_planned()
        assert all(node.state == NodeState.PLANNED for node in graph)

    def test_validate_clean_graph(self):
        assert self._fargate_graph().validate() == []

    def test_descendants(self):
        graph = self._fargate_graph()
        descendants = graph.descendants_of("vpc")
        assert "web-alb" in descendants
        assert "app-service" in descendants
        assert "app-repo" not in descendants

    def test_statistics_and_dict(self):
        graph = self._fargate_graph()
        stats = graph.statistics()
        assert stats["total_resources"] == 13
        assert stats["total_edges"] == len(graph.edges)

        data = graph.to_dict()
        assert set(data["nodes"]) == set(graph.nodes)
        assert data["nodes"]["app-image"]["inputs"]["registry"] == "[secret]"
