import pulumi
import pulumi_aws as aws
import inspect
import re
from typing import Any, Dict, List

from stack_config import REF_PREFIX, AWSResource, StackConfig

SECRET_PREFIX = "secret:"
JSON_DIRECTIVE = "to_json"

AWS_REGION_ABBREVIATIONS = {
    "us-east-1": "use1",
    "us-east-2": "use2",
    "us-west-1": "usw1",
    "us-west-2": "usw2",
    "af-south-1": "afs1",
    "ap-east-1": "ape1",
    "ap-south-1": "aps1",
    "ap-northeast-1": "apne1",
    "ap-northeast-2": "apne2",
    "ap-northeast-3": "apne3",
    "ap-southeast-1": "apse1",
    "ap-southeast-2": "apse2",
    "ca-central-1": "cac1",
    "eu-central-1": "euc1",
    "eu-west-1": "euw1",
    "eu-west-2": "euw2",
    "eu-west-3": "euw3",
    "eu-north-1": "eun1",
    "eu-south-1": "eus1",
    "me-south-1": "mes1",
    "sa-east-1": "sae1",
    "us-gov-east-1": "usge1",
    "us-gov-west-1": "usgw1",
    "cn-north-1": "cnn1",
    "cn-northwest-1": "cnnw1",
}

def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

def resolve_ref(ref_text: str, resources: Dict[str, Any]) -> Any:
    if "." in ref_text:
        ref_res, ref_attr = ref_text.split(".", 1)
    else:
        ref_res, ref_attr = ref_text, "id"
    if ref_res not in resources:
        raise ValueError(f"Referenced resource '{ref_res}' not found.")
    attr_val = getattr(resources[ref_res], ref_attr, None)
    if attr_val is None:
        raise ValueError(f"Attribute '{ref_attr}' not found on resource '{ref_res}'")
    return attr_val

def resolve_value(value: Any, resources: Dict[str, Any]) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and JSON_DIRECTIVE in value:
            # Serialized after resolution so embedded refs become concrete values
            return pulumi.Output.json_dumps(resolve_value(value[JSON_DIRECTIVE], resources))
        return {k: resolve_value(v, resources) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_value(item, resources) for item in value]
    elif isinstance(value, str):
        if value.startswith(SECRET_PREFIX):
            # Fetch secret from Pulumi config
            secret_key = value[len(SECRET_PREFIX):]
            config = pulumi.Config()
            return config.require_secret(secret_key)
        elif value.startswith(REF_PREFIX):
            return resolve_ref(value[len(REF_PREFIX):], resources)
        else:
            return value
    else:
        return value

def get_lookup_params(required_params: set, resolved_args: dict) -> dict:
    lookup_params = {}
    for param in required_params:
        snake_key = to_snake_case(param)
        if snake_key in resolved_args:
            lookup_params[param] = resolved_args[snake_key]
        elif param in resolved_args:
            lookup_params[param] = resolved_args[param]
    return lookup_params

def constructor_signature(resource_class: type) -> inspect.Signature:
    """Signature listing the resource's real input properties.

    Generated pulumi_aws classes expose ``__init__(*args, **kwargs)`` and
    keep the explicit parameter list on ``_internal_init``.
    """
    init = getattr(resource_class, "_internal_init", resource_class.__init__)
    return inspect.signature(init)

class AWSStackBuilder:
    def __init__(self, config_data: dict):
        self.config = config_data
        self.stack = StackConfig.from_dict(config_data)
        self.resources: Dict[str, Any] = {}

    def get_abbreviation(self, region: str) -> str:
        return AWS_REGION_ABBREVIATIONS.get(region.lower(), region.split("-")[0].lower())

    def generate_resource_name(self, base_name: str) -> str:
        team = self.stack.team.strip().lower()
        service = self.stack.service.strip().lower()
        env = self.stack.environment.strip().lower()
        reg_abbr = self.get_abbreviation(self.stack.region)
        return f"{team}-{service}-{env}-{reg_abbr}-{base_name}".lower()

    def resolve_args(self, args: dict) -> dict:
        return {key: resolve_value(value, self.resources) for key, value in args.items()}

    def _apply_common_parameters(self, resolved_args: dict, init_sig: inspect.Signature) -> dict:
        if "tags" in init_sig.parameters:
            if self.stack.tags:
                explicit = resolved_args.get("tags") or {}
                if isinstance(explicit, dict):
                    resolved_args["tags"] = {**self.stack.tags, **explicit}
        else:
            resolved_args.pop("tags", None)
        if "region" in init_sig.parameters:
            if "region" not in resolved_args:
                resolved_args["region"] = self.stack.region
        else:
            resolved_args.pop("region", None)
        return resolved_args

    def _resource_options(self, resource_cfg: AWSResource) -> pulumi.ResourceOptions:
        depends_on: List[pulumi.Resource] = []
        for dep in resource_cfg.depends_on:
            target = self.resources.get(dep)
            if isinstance(target, pulumi.Resource):
                depends_on.append(target)
            else:
                pulumi.log.warn(f"'{resource_cfg.name}' depends on '{dep}', which is not a managed resource. Ignoring.")
        return pulumi.ResourceOptions(depends_on=depends_on or None)

    def _lookup_existing(self, resource_cfg: AWSResource, module: Any, class_name: str, resolved_args: dict) -> bool:
        name = resource_cfg.name
        get_func_name = f"get_{to_snake_case(class_name)}"
        try:
            get_func = getattr(module, get_func_name)
            sig = inspect.signature(get_func)
            get_required = {k for k, param in sig.parameters.items() if k not in {"opts"} and param.default == param.empty}
            get_params = get_lookup_params(get_required, resolved_args)
            missing = get_required - set(get_params.keys())
            if missing:
                pulumi.log.warn(f"Missing required params {missing} for existing resource '{name}'. Skipping the lookup attempt.")
                return False
            self.resources[name] = get_func(**get_params)
            pulumi.log.info(f"Fetched existing resource '{name}' via '{get_func_name}' with {get_params}")
            return True
        except AttributeError:
            pulumi.log.warn(f"Function '{get_func_name}' not found for '{resource_cfg.type}'. Proceeding to create new resource '{name}'.")
        except Exception as e:
            pulumi.log.warn(f"Failed to retrieve existing resource '{name}': {e}. Proceeding with creation.")
        return False

    def build(self):
        self.stack.validate()
        for resource_cfg in self.stack.aws_resources:
            name = resource_cfg.name
            resource_type = resource_cfg.type
            args = dict(resource_cfg.args)
            is_existing = args.pop("existing", False)
            resolved_args = self.resolve_args(args)
            module_name, class_name = resource_type.rsplit(".", 1)
            module = getattr(aws, module_name, None)
            if not module:
                pulumi.log.warn(f"AWS module '{module_name}' not found. Skipping '{name}'.")
                continue
            try:
                ResourceClass = getattr(module, class_name)
            except AttributeError:
                pulumi.log.warn(f"Resource class '{class_name}' not found in module '{module_name}'. Skipping '{name}'.")
                continue
            if is_existing and self._lookup_existing(resource_cfg, module, class_name, resolved_args):
                continue
            init_sig = constructor_signature(ResourceClass)
            resolved_args = self._apply_common_parameters(resolved_args, init_sig)
            pulumi_name = resource_cfg.custom_name or self.generate_resource_name(name)
            pulumi.log.info(f"Resolved args for '{name}': {sorted(resolved_args)}")
            resource_instance = ResourceClass(pulumi_name, opts=self._resource_options(resource_cfg), **resolved_args)
            self.resources[name] = resource_instance
            pulumi.log.info(f"Created resource: {pulumi_name} ({resource_type})")

    def resolve_outputs(self) -> Dict[str, Any]:
        """Resolve the declared stack outputs against the built resources."""
        return {name: resolve_value(value, self.resources) for name, value in self.stack.outputs.items()}
