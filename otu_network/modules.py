"""Module detection by hierarchical clustering of topological overlap."""

import pandas as pd
import numpy as np
from scipy.cluster.hierarchy import linkage, to_tree, fcluster
from scipy.spatial.distance import squareform
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler
from typing import Tuple, List

from otu_network.associations import pairwise_cor

UNASSIGNED = 'grey'

MODULE_COLORS = [
    'turquoise', 'blue', 'brown', 'yellow', 'green', 'red', 'black', 'pink',
    'magenta', 'purple', 'greenyellow', 'tan', 'salmon', 'cyan', 'midnightblue',
    'lightcyan', 'grey60', 'lightgreen', 'lightyellow', 'royalblue', 'darkred',
    'darkgreen', 'darkturquoise', 'darkgrey', 'orange', 'darkorange', 'white',
    'skyblue', 'saddlebrown', 'steelblue', 'paleturquoise', 'violet',
    'darkolivegreen', 'darkmagenta'
]


def module_label(rank: int) -> str:
    """Label of the rank-th largest module (0-based)."""
    if rank < len(MODULE_COLORS):
        return MODULE_COLORS[rank]
    return f"module_{rank + 1}"


class ModuleDetector:
    """Partitions taxa into co-occurrence modules and summarizes them."""

    def __init__(self, logger, config):
        self.logger = logger
        self.config = config

    def cluster(self, dissimilarity: pd.DataFrame) -> np.ndarray:
        """Agglomerative clustering of taxa on a dissimilarity matrix.

        Returns:
            np.ndarray: scipy linkage matrix
        """
        diss = dissimilarity.values.astype(np.float64).copy()
        diss = (diss + diss.T) / 2
        np.fill_diagonal(diss, 0.0)
        condensed = squareform(np.clip(diss, 0.0, None), checks=False)
        return linkage(condensed, method=self.config.get('LINKAGE_METHOD', 'average'))

    def default_cut_height(self, tree: np.ndarray) -> float:
        """99% of the range between the 5th percentile and the maximum join height."""
        heights = tree[:, 2]
        low = np.quantile(heights, 0.05)
        return float(0.99 * (heights.max() - low) + low)

    def cut_tree(self, tree: np.ndarray, min_size: int) -> List[List[int]]:
        """Cut a dendrogram into branches of at least min_size leaves.

        Branches joining above the cut height are separated first. A branch is
        split further when its join height exceeds the join heights of its
        children by at least SPLIT_GAP and either both children have min_size
        leaves (both kept) or one has (the small one is set aside and ends up
        unassigned).

        Returns:
            list: Leaf index lists, including the undersized ones
        """
        cut_height = self.config.get('CUT_HEIGHT')
        if cut_height is None:
            cut_height = self.default_cut_height(tree)
        split_gap = self.config.get('SPLIT_GAP', 0.25)

        root = to_tree(tree)

        branches = []
        stack = [root]
        while stack:
            node = stack.pop()
            if node.is_leaf() or node.dist <= cut_height:
                branches.append(node)
            else:
                stack.extend([node.get_right(), node.get_left()])

        clusters = []
        stack = list(reversed(branches))
        while stack:
            node = stack.pop()
            if node.is_leaf():
                clusters.append([node.id])
                continue

            left, right = node.get_left(), node.get_right()
            big_left = left.get_count() >= min_size
            big_right = right.get_count() >= min_size

            if big_left and big_right and node.dist - max(left.dist, right.dist) >= split_gap:
                stack.extend([right, left])
            elif big_left != big_right:
                big, small = (left, right) if big_left else (right, left)
                if node.dist - big.dist >= split_gap:
                    clusters.append(small.pre_order())
                    stack.append(big)
                else:
                    clusters.append(node.pre_order())
            else:
                clusters.append(node.pre_order())

        self.logger.debug(
            f"    Tree cut at height {cut_height:.3f}: {len(branches)} branches, "
            f"{len(clusters)} clusters before size filter"
        )
        return clusters

    def label_clusters(self, clusters: List[List[int]], taxa, min_size: int) -> pd.Series:
        """Label clusters by decreasing size; clusters below min_size are unassigned."""
        modules = pd.Series(UNASSIGNED, index=list(taxa), name='module')

        kept = [sorted(c) for c in clusters if len(c) >= min_size]
        kept.sort(key=lambda c: (-len(c), c[0]))

        for rank, members in enumerate(kept):
            modules.iloc[members] = module_label(rank)

        return modules

    def detect_modules(self, dissimilarity: pd.DataFrame) -> Tuple[pd.Series, np.ndarray]:
        """Cluster taxa and cut the tree into labeled modules.

        Args:
            dissimilarity: Taxa x taxa 1 - TOM matrix

        Returns:
            tuple: (taxon -> module label Series, linkage matrix)
        """
        min_size = self.config['MIN_MODULE_SIZE']
        self.logger.info(
            f"  Clustering {dissimilarity.shape[0]} taxa "
            f"({self.config.get('LINKAGE_METHOD', 'average')} linkage, min module size {min_size})"
        )

        tree = self.cluster(dissimilarity)
        clusters = self.cut_tree(tree, min_size)
        modules = self.label_clusters(clusters, dissimilarity.index, min_size)

        self._log_modules(modules)
        return modules, tree

    def module_eigengenes(self, abundance: pd.DataFrame, modules: pd.Series) -> Tuple[pd.DataFrame, pd.Series]:
        """First principal component of each module's standardized members.

        Each eigengene is oriented to correlate positively with the mean
        standardized member abundance and scaled to unit variance. A
        single-member module returns the standardized member.

        Returns:
            tuple: (samples x modules eigengene DataFrame, variance explained per module)
        """
        eigengenes = {}
        var_explained = {}

        for label in self.module_labels(modules):
            members = modules.index[modules == label]
            data = abundance[members]
            data = data.fillna(data.mean())
            scaled = StandardScaler().fit_transform(data.values)

            if len(members) == 1:
                eigengenes[label] = scaled[:, 0]
                var_explained[label] = 1.0
                continue

            pca = PCA(n_components=1, svd_solver='full')
            scores = pca.fit_transform(scaled)[:, 0]

            average = scaled.mean(axis=1)
            if np.corrcoef(scores, average)[0, 1] < 0:
                scores = -scores

            eigengenes[label] = (scores - scores.mean()) / scores.std()
            var_explained[label] = float(pca.explained_variance_ratio_[0])

        eigengene_df = pd.DataFrame(eigengenes, index=abundance.index)
        return eigengene_df, pd.Series(var_explained, name='var_explained')

    def merge_close_modules(self, abundance: pd.DataFrame, modules: pd.Series,
                            cut_height: float) -> pd.Series:
        """Merge modules whose eigengenes correlate at 1 - cut_height or more.

        Merged modules are relabeled by size.
        """
        labels = self.module_labels(modules)
        if len(labels) < 2:
            return modules

        eigengenes, _ = self.module_eigengenes(abundance, modules)
        r, _ = pairwise_cor(eigengenes.values)
        diss = 1 - np.nan_to_num(r, nan=0.0)
        diss = (diss + diss.T) / 2
        np.fill_diagonal(diss, 0.0)

        tree = linkage(squareform(np.clip(diss, 0.0, None), checks=False), method='average')
        groups = fcluster(tree, t=cut_height, criterion='distance')

        if len(set(groups)) == len(labels):
            self.logger.debug("    No modules close enough to merge")
            return modules

        group_of = dict(zip(eigengenes.columns, groups))
        position = {taxon: i for i, taxon in enumerate(modules.index)}
        clusters = {}
        for taxon, label in modules.items():
            if label != UNASSIGNED:
                clusters.setdefault(group_of[label], []).append(position[taxon])

        merged = self.label_clusters(list(clusters.values()), modules.index, 1)

        self.logger.info(
            f"  Merged {len(labels)} modules into {len(clusters)} "
            f"(eigengene dissimilarity < {cut_height})"
        )
        return merged

    def module_stats(self, modules: pd.Series, adjacency: pd.DataFrame, tom: pd.DataFrame,
                     var_explained: pd.Series) -> pd.DataFrame:
        """Size, eigengene variance explained and within-module density per module."""
        stats = []
        for label in self.module_labels(modules):
            members = modules.index[modules == label]
            n = len(members)
            if n > 1:
                mask = ~np.eye(n, dtype=bool)
                mean_adj = float(np.nanmean(adjacency.loc[members, members].values[mask]))
                mean_tom = float(np.nanmean(tom.loc[members, members].values[mask]))
            else:
                mean_adj = mean_tom = 0.0
            stats.append({
                'module': label,
                'n_taxa': n,
                'var_explained': var_explained.get(label, np.nan),
                'mean_adjacency': mean_adj,
                'mean_tom': mean_tom
            })
        return pd.DataFrame(stats)

    def intramodular_connectivity(self, adjacency: pd.DataFrame, modules: pd.Series) -> pd.DataFrame:
        """Total, within-module and outside-module connectivity per taxon."""
        a = adjacency.loc[modules.index, modules.index].values.copy()
        np.fill_diagonal(a, np.nan)

        k_total = np.nansum(a, axis=1)
        k_within = np.zeros(len(modules))
        labels = modules.values
        for label in np.unique(labels):
            idx = np.where(labels == label)[0]
            k_within[idx] = np.nansum(a[np.ix_(idx, idx)], axis=1)

        # Unassigned taxa are not a module
        k_within[labels == UNASSIGNED] = np.nan

        return pd.DataFrame({
            'module': labels,
            'k_total': k_total,
            'k_within': k_within,
            'k_out': k_total - k_within,
            'k_diff': k_within - (k_total - k_within)
        }, index=modules.index)

    @staticmethod
    def module_labels(modules: pd.Series) -> list:
        """Assigned module labels, largest first (ties by first member position)."""
        first_position = {}
        for i, label in enumerate(modules.values):
            first_position.setdefault(label, i)
        counts = modules[modules != UNASSIGNED].value_counts()
        return sorted(counts.index, key=lambda label: (-counts[label], first_position[label]))

    def _log_modules(self, modules: pd.Series):
        counts = modules.value_counts()
        n_modules = int((counts.index != UNASSIGNED).sum())
        n_unassigned = int(counts.get(UNASSIGNED, 0))
        self.logger.info(f"  Found {n_modules} modules, {n_unassigned} unassigned taxa")
        for label in self.module_labels(modules):
            self.logger.debug(f"    {label}: {counts[label]} taxa")
