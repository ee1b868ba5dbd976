import importlib

mod = "avroshape"
class LazyLoader:
    """
    Lazy loader for the avroshape functions so that importing the package stays cheap.
    """
    def __init__(self, mappings):
        self._modules = {}
        self._mappings = mappings

    def _load_module(self, module_name):
        if module_name not in self._modules:
            self._modules[module_name] = importlib.import_module(module_name)
        return self._modules[module_name]

    def __getattr__(self, item):
        if item in self._mappings:
            module_name, func_name = self._mappings[item]
            module = self._load_module(module_name)
            return getattr(module, func_name)
        else:
            return self._load_module(f"{mod}.{item}")

# Define the functions and their corresponding module paths
_mappings = {
    "infer_avro_schema": (f"{mod}.schema_inference", "infer_avro_schema"),
    "AvroSchemaInferrer": (f"{mod}.schema_inference", "AvroSchemaInferrer"),
    "infer_schema": (f"{mod}.schema_inference", "infer_schema"),
    "encode": (f"{mod}.avroencoder", "encode"),
    "AvroEncoder": (f"{mod}.avroencoder", "AvroEncoder"),
    "decode": (f"{mod}.avrodecoder", "decode"),
    "AvroDecoder": (f"{mod}.avrodecoder", "AvroDecoder"),
    "ConversionOptions": (f"{mod}.options", "ConversionOptions"),
    "OnBadRecords": (f"{mod}.options", "OnBadRecords"),
    "schemas_equivalent": (f"{mod}.schema_model", "schemas_equivalent"),
    "convert_json_to_avro_schema": (f"{mod}.jsontoavro", "convert_json_to_avro_schema"),
    "convert_json_to_avro": (f"{mod}.jsontoavro", "convert_json_to_avro"),
    "convert_avro_to_json": (f"{mod}.jsontoavro", "convert_avro_to_json"),
}

_lazy_loader = LazyLoader(_mappings)

def __getattr__(name):
    return getattr(_lazy_loader, name)
