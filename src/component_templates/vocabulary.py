"""Vocabulary used to describe templates and their graphs."""

LP = "http://linkedpipes.com/ontology/"
RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
SKOS = "http://www.w3.org/2004/02/skos/core#"

RDF_TYPE = f"{RDF}type"
TEMPLATE_CLASS = f"{LP}Template"

# Link from a template to its parent template.
TEMPLATE_PARENT = f"{LP}template"

# Parent link used by stores older than version 2.
LEGACY_TEMPLATE_PARENT = f"{LP}parentTemplate"

PREF_LABEL = f"{SKOS}prefLabel"


def interface_graph(iri: str) -> str:
    return iri


def configuration_graph(iri: str) -> str:
    return f"{iri}/configuration"


def description_graph(iri: str) -> str:
    return f"{iri}/description"
