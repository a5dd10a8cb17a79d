import pulumi
from awsstack import AWSStackBuilder
from stack_config import load_config

DEFAULT_CONFIG_FILE = "config.yaml"

def main():
    # Load YAML configuration
    config_file = pulumi.Config().get("configFile") or DEFAULT_CONFIG_FILE
    config_data = load_config(config_file)

    try:
        builder = AWSStackBuilder(config_data)
    except Exception as e:
        pulumi.log.error(f"Failed to initialize AWSStackBuilder: {e}")
        raise

    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    outputs = builder.resolve_outputs()
    if outputs:
        for name, value in outputs.items():
            pulumi.export(name, value)
        return

    # No declared outputs: export created resource ids
    for name, resource in builder.resources.items():
        try:
            pulumi.export(name, resource.id)
        except Exception as e:
            pulumi.log.warn(f"Failed to export resource '{name}': {e}")

if __name__ == "__main__":
    main()
