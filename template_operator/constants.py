"""
Shared module to hold constant values for the library
"""

# API group and version served by the operator
API_GROUP = "operator.kyma-project.io"
API_VERSION = f"{API_GROUP}/v1alpha1"

# Kinds handled by the default registry
SAMPLE_KIND = "Sample"
SAMPLE_HELM_KIND = "SampleHelm"

# Spec fields that point each kind's renderer at its input
RESOURCE_FILE_PATH_FIELD = "resourceFilePath"
CHART_PATH_FIELD = "chartPath"

# The single condition type managed on every custom resource
INSTALLATION_CONDITION = "Installation"
INSTALLATION_REASON = "Ready"
INSTALLATION_MESSAGE = "installation is ready and resources can be used"

# Event reasons
STATUS_UPDATED_REASON = "StatusUpdated"
STATUS_UPDATE_FAILED_REASON = "ErrorUpdatingStatus"

# File extensions recognized as manifests by the static directory renderer
MANIFEST_EXTENSIONS = (".yaml", ".yml")

# Delimiter between documents in a multi-document manifest
DOCUMENT_DELIMITER = "---"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Timestamp format used for conditions and events
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
