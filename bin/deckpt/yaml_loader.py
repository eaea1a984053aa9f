import yaml


class CatalogSafeLoader(yaml.SafeLoader):
    """SafeLoader that leaves dates and bare numbers as strings.

    Package names and version-like targets such as ``1.10`` must survive parsing untouched.
    """

    @classmethod
    def remove_implicit_resolver(cls, tag_to_remove):
        if "yaml_implicit_resolvers" not in cls.__dict__:
            cls.yaml_implicit_resolvers = cls.yaml_implicit_resolvers.copy()

        for first_letter, mappings in cls.yaml_implicit_resolvers.items():
            cls.yaml_implicit_resolvers[first_letter] = [
                (tag, regexp) for tag, regexp in mappings if tag != tag_to_remove
            ]


CatalogSafeLoader.remove_implicit_resolver("tag:yaml.org,2002:timestamp")
CatalogSafeLoader.remove_implicit_resolver("tag:yaml.org,2002:float")


def load_yaml(path):
    with path.open(encoding="utf-8") as yaml_file:
        return yaml.load(yaml_file, Loader=CatalogSafeLoader)
