import pytest
import yaml

from pathlib import Path

from stack_config import AWSResource, StackConfig, load_config

CONFIG_FILE = Path(__file__).resolve().parent.parent / "config.yaml"


def make_config_dict(**overrides) -> dict:
    data = {
        "team": "rt",
        "service": "media",
        "environment": "dev",
        "region": "us-east-1",
        "aws_resources": [
            {"name": "vpc", "type": "ec2.Vpc", "args": {"cidr_block": "10.0.0.0/16"}},
            {"name": "subnet", "type": "ec2.Subnet", "args": {"vpc_id": "ref:vpc"}},
        ],
        "outputs": {"vpc_id": "ref:vpc"},
    }
    data.update(overrides)
    return data


def test_load_config_from_yaml(tmp_path: Path):
    p = tmp_path / "stack.yaml"
    p.write_text(yaml.safe_dump(make_config_dict()))

    data = load_config(str(p))

    assert data["team"] == "rt"
    assert len(data["aws_resources"]) == 2


@pytest.mark.parametrize("key", ["team", "service", "environment", "region"])
def test_load_config_missing_required_key(tmp_path: Path, key):
    data = make_config_dict()
    del data[key]
    p = tmp_path / "stack.yaml"
    p.write_text(yaml.safe_dump(data))

    with pytest.raises(ValueError, match=key):
        load_config(str(p))


def test_load_config_rejects_non_mapping(tmp_path: Path):
    p = tmp_path / "stack.yaml"
    p.write_text("- just\n- a list\n")

    with pytest.raises(ValueError):
        load_config(str(p))


def test_from_dict_builds_typed_view():
    cfg = StackConfig.from_dict(make_config_dict(tags={"owner": "rt"}))

    assert cfg.region == "us-east-1"
    assert cfg.tags == {"owner": "rt"}
    assert [r.name for r in cfg.aws_resources] == ["vpc", "subnet"]
    assert cfg.aws_resources[1].args == {"vpc_id": "ref:vpc"}
    assert cfg.aws_resources[0].depends_on == []


def test_resource_requires_module_and_class():
    with pytest.raises(ValueError, match="module.Class"):
        AWSResource.from_dict({"name": "vpc", "type": "Vpc"})


def test_resource_requires_name():
    with pytest.raises(ValueError, match="name"):
        AWSResource.from_dict({"type": "ec2.Vpc"})


def test_duplicate_names_rejected():
    data = make_config_dict()
    data["aws_resources"].append({"name": "vpc", "type": "ec2.Vpc"})

    with pytest.raises(ValueError, match="Duplicate"):
        StackConfig.from_dict(data)


def test_references_cover_nested_args_and_outputs():
    data = make_config_dict()
    data["aws_resources"].append(
        {
            "name": "rt",
            "type": "ec2.RouteTable",
            "args": {"vpc_id": "ref:vpc", "routes": [{"gateway_id": "ref:subnet.id"}]},
        }
    )
    cfg = StackConfig.from_dict(data)

    assert cfg.references() == [
        ("subnet", "vpc"),
        ("rt", "vpc"),
        ("rt", "subnet"),
        ("output 'vpc_id'", "vpc"),
    ]


def test_validate_accepts_backward_references():
    StackConfig.from_dict(make_config_dict()).validate()


def test_validate_rejects_forward_reference():
    data = make_config_dict()
    data["aws_resources"].reverse()
    cfg = StackConfig.from_dict(data)

    with pytest.raises(ValueError, match="subnet"):
        cfg.validate()


def test_validate_rejects_unknown_dependency():
    data = make_config_dict()
    data["aws_resources"][1]["depends_on"] = ["gateway"]

    with pytest.raises(ValueError, match="gateway"):
        StackConfig.from_dict(data).validate()


def test_validate_rejects_dangling_output():
    cfg = StackConfig.from_dict(make_config_dict(outputs={"lb": "ref:lb.dns_name"}))

    with pytest.raises(ValueError, match="lb"):
        cfg.validate()


def test_validate_rejects_literal_output():
    cfg = StackConfig.from_dict(make_config_dict(outputs={"lb": "example.com"}))

    with pytest.raises(ValueError, match="ref:"):
        cfg.validate()


def test_shipped_config_is_consistent():
    cfg = StackConfig.from_dict(load_config(str(CONFIG_FILE)))
    cfg.validate()

    types = [r.type for r in cfg.aws_resources]
    assert types.count("lb.LoadBalancer") == 2
    assert types.count("lb.TargetGroup") == 2
    assert types.count("ecs.Service") == 1
    assert set(cfg.outputs) == {"http_lb_address", "stream_lb_address"}


def test_non_string_type_rejected():
    data = make_config_dict()
    data["aws_resources"][0]["type"] = 5

    with pytest.raises(ValueError, match="module.Class"):
        StackConfig.from_dict(data)


def test_single_depends_on_name_accepted():
    data = make_config_dict()
    data["aws_resources"][1]["depends_on"] = "vpc"
    cfg = StackConfig.from_dict(data)

    assert cfg.aws_resources[1].depends_on == ["vpc"]
    cfg.validate()


def test_depends_on_must_be_names():
    data = make_config_dict()
    data["aws_resources"][1]["depends_on"] = {"vpc": True}

    with pytest.raises(ValueError, match="depends_on"):
        StackConfig.from_dict(data)


def test_outputs_must_be_a_mapping():
    with pytest.raises(ValueError, match="outputs"):
        StackConfig.from_dict(make_config_dict(outputs=["ref:vpc"]))


def test_resource_args_must_be_a_mapping():
    data = make_config_dict()
    data["aws_resources"][0]["args"] = ["10.0.0.0/16"]

    with pytest.raises(ValueError, match="args of resource 'vpc'"):
        StackConfig.from_dict(data)


def test_shipped_config_zones_match_region():
    cfg = StackConfig.from_dict(load_config(str(CONFIG_FILE)))
    by_name = {r.name: r for r in cfg.aws_resources}

    for subnet in ("public-a", "public-b"):
        assert by_name[subnet].args["availability_zone"].startswith(cfg.region)
    container = by_name["task"].args["container_definitions"]["to_json"][0]
    assert container["logConfiguration"]["options"]["awslogs-region"] == cfg.region
