import jsonschema

from switchboard.tools.base import PluginDescriptor


class ArgumentValidator:
    @staticmethod
    def validate(plugin: PluginDescriptor, arguments: dict) -> tuple[bool, str | None]:
        try:
            jsonschema.validate(instance=arguments, schema=plugin.schema)
            return True, None
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path)
            return False, f"{path}: {e.message}" if path else str(e.message)
        except jsonschema.SchemaError as e:
            return False, f"invalid schema for {plugin.name}: {e.message}"
