"""
Graph utilities
Print and analyse the structure of a constructed computation graph.
"""

from collections import Counter
from typing import Dict

import numpy as np

from .node import OperationNode


def get_graph_stats(graph) -> Dict:
    """
    Collect graph statistics (without printing).

    Fan-in counts predecessor links of a node; fan-out counts its successor
    entries (one per consuming input slot).

    Returns:
        dict of statistics
    """
    if not graph.nodes:
        return {
            'nodes': 0,
            'edges': 0,
            'external_inputs': 0,
            'max_fan_in': 0,
            'avg_fan_in': 0.0,
            'max_fan_out': 0,
            'avg_fan_out': 0.0,
            'time_steps': 0,
            'layers': 0,
            'operations': {}
        }

    nodes = graph.nodes
    fan_ins = [len(node.predecessors) for node in nodes]
    fan_outs = [node.out_degree for node in nodes]
    n_external = sum(len(node.parameters) - len(node.predecessors) for node in nodes)

    time_steps = {node.key.time_step for node in nodes if node.key.time_step is not None}
    layers = {node.key.layer for node in nodes if node.key.layer is not None}

    return {
        'nodes': len(nodes),
        'edges': sum(fan_ins),
        'external_inputs': n_external,
        'max_fan_in': max(fan_ins),
        'avg_fan_in': float(np.mean(fan_ins)),
        'max_fan_out': max(fan_outs),
        'avg_fan_out': float(np.mean(fan_outs)),
        'time_steps': len(time_steps),
        'layers': len(layers),
        'operations': dict(Counter(node.type_name for node in nodes))
    }


def print_graph_summary(graph, detailed: bool = False) -> Dict:
    """
    Print a summary of the graph.

    Args:
        graph: ComputationGraph
        detailed: also list the nodes (only for graphs of at most 100 nodes)

    Returns:
        the statistics dict from get_graph_stats
    """
    stats = get_graph_stats(graph)
    if stats['nodes'] == 0:
        print("Empty computation graph")
        return stats

    n_nodes = stats['nodes']
    print("\n" + "="*70)
    print("COMPUTATION GRAPH SUMMARY")
    print("="*70)
    print(f"Total nodes:        {n_nodes:,}")
    print(f"Total edges:        {stats['edges']:,}")
    print(f"External inputs:    {stats['external_inputs']:,}")
    print(f"Time steps:         {stats['time_steps']}")
    print(f"Layers:             {stats['layers']}")
    print(f"Max fan-in:         {stats['max_fan_in']}")
    print(f"Avg fan-in:         {stats['avg_fan_in']:.2f}")
    print(f"Max fan-out:        {stats['max_fan_out']}")
    print(f"Avg fan-out:        {stats['avg_fan_out']:.2f}")
    print()
    print("Operation breakdown:")
    for op_type, count in Counter(stats['operations']).most_common(10):
        pct = 100.0 * count / n_nodes
        print(f"  {op_type:22s}: {count:6,} ({pct:5.1f}%)")

    if detailed and n_nodes <= 100:
        print()
        print("="*70)
        print("DETAILED NODE LIST")
        print("="*70)
        for i, node in enumerate(graph.nodes):
            inputs = ", ".join(
                str(p.key) if isinstance(p, OperationNode) else "external"
                for p in node.parameters
            )
            print(f"Node {i:3d}: {str(node.key):24s} {node.type_name:22s} <- [{inputs}]")

    print("="*70 + "\n")
    return stats


def analyze_graph_complexity(graph) -> str:
    """
    Text report on graph complexity.
    """
    stats = get_graph_stats(graph)

    if stats['nodes'] == 0:
        return "Empty computation graph"

    report = []
    report.append("Graph Complexity Analysis:")
    report.append(f"  Total operations: {stats['nodes']:,}")
    report.append(f"  Total connections: {stats['edges']:,}")
    report.append(f"  Average branching: {stats['avg_fan_out']:.2f}")

    if stats['nodes'] < 1000:
        complexity = "Low"
    elif stats['nodes'] < 10000:
        complexity = "Medium"
    else:
        complexity = "High"
    report.append(f"  Complexity level: {complexity}")

    if stats['operations']:
        top_ops = sorted(stats['operations'].items(), key=lambda x: x[1], reverse=True)[:3]
        report.append("  Top operations:")
        for op, count in top_ops:
            pct = 100.0 * count / stats['nodes']
            report.append(f"    - {op}: {pct:.1f}%")

    return "\n".join(report)
