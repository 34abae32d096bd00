"""Export module networks for Cytoscape, VisANT and GraphML readers."""

import pandas as pd
import networkx as nx
from pathlib import Path
from typing import Tuple


class NetworkExporter:
    """Builds weighted module graphs from TOM tables and writes them to disk."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def module_graph(self, tom: pd.DataFrame, members, threshold: float = None,
                     alt_names: pd.Series = None, module: str = None) -> nx.Graph:
        """Undirected graph of module members joined where overlap exceeds threshold.

        Args:
            tom: Taxa x taxa topological overlap
            members: Module member taxa
            threshold: Minimum overlap for an edge (default config['EXPORT_THRESHOLD'])
            alt_names: Optional alternative node names (e.g. Phylum_Family)
            module: Module label stored as node attribute

        Returns:
            nx.Graph: Weighted graph (isolated members kept as nodes)
        """
        if threshold is None:
            threshold = self.config['EXPORT_THRESHOLD']

        members = list(members)
        sub = tom.loc[members, members]

        G = nx.Graph()
        for taxon in members:
            alt = alt_names.get(taxon, taxon) if alt_names is not None else taxon
            G.add_node(taxon, alt_name=str(alt), module=str(module) if module else '')

        edges = []
        for i, u in enumerate(members):
            for j in range(i + 1, len(members)):
                v = members[j]
                weight = float(sub.iat[i, j])
                if weight > threshold:
                    edges.append((u, v, {'weight': weight}))
        G.add_edges_from(edges)

        self.logger.info(
            f"    Module graph: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges "
            f"(TOM > {threshold})"
        )
        return G

    def cytoscape_tables(self, G: nx.Graph) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """Edge and node tables in Cytoscape import layout."""
        edges = []
        for u, v, data in G.edges(data=True):
            edges.append({
                'fromNode': u,
                'toNode': v,
                'weight': data['weight'],
                'direction': 'undirected',
                'fromAltName': G.nodes[u]['alt_name'],
                'toAltName': G.nodes[v]['alt_name']
            })
        edge_df = pd.DataFrame(
            edges,
            columns=['fromNode', 'toNode', 'weight', 'direction', 'fromAltName', 'toAltName']
        )

        nodes = []
        for node, data in G.nodes(data=True):
            if self.config.get('EXPORT_ISOLATED', False) or G.degree(node) > 0:
                nodes.append({
                    'nodeName': node,
                    'altName': data['alt_name'],
                    'nodeAttr': data['module']
                })
        node_df = pd.DataFrame(nodes, columns=['nodeName', 'altName', 'nodeAttr'])

        return edge_df, node_df

    def write_cytoscape(self, G: nx.Graph, edge_file: Path, node_file: Path):
        edge_df, node_df = self.cytoscape_tables(G)
        edge_df.to_csv(edge_file, sep='\t', index=False)
        node_df.to_csv(node_file, sep='\t', index=False)
        self.logger.debug(f"    Wrote Cytoscape files: {edge_file.name}, {node_file.name}")

    def write_visant(self, G: nx.Graph, path: Path):
        """VisANT edge list: from, to, direction (0), method code, weight, alt names.

        Nodes are taxon ids; alternative names are shared between taxa.
        """
        columns = ['from', 'to', 'direction', 'method', 'weight', 'fromAltName', 'toAltName']
        rows = [
            {'from': u, 'to': v, 'direction': 0, 'method': 'M1002', 'weight': data['weight'],
             'fromAltName': G.nodes[u]['alt_name'], 'toAltName': G.nodes[v]['alt_name']}
            for u, v, data in G.edges(data=True)
        ]
        pd.DataFrame(rows, columns=columns).to_csv(path, sep='\t', index=False, header=False)
        self.logger.debug(f"    Wrote VisANT file: {path.name}")

    def write_graphml(self, G: nx.Graph, path: Path):
        nx.write_graphml(G, path)
        self.logger.debug(f"    Wrote GraphML: {path.name}")

    def export_module(self, tom: pd.DataFrame, members, module: str, output_dir: Path,
                      alt_names: pd.Series = None) -> nx.Graph:
        """Write Cytoscape, VisANT and GraphML files for one module."""
        output_dir = Path(output_dir)
        output_dir.mkdir(exist_ok=True, parents=True)

        G = self.module_graph(tom, members, alt_names=alt_names, module=module)
        self.write_cytoscape(
            G,
            output_dir / f"CytoscapeInput_edges_{module}.txt",
            output_dir / f"CytoscapeInput_nodes_{module}.txt"
        )
        self.write_visant(G, output_dir / f"VisANTInput_{module}.txt")
        self.write_graphml(G, output_dir / f"network_{module}.graphml")
        return G
