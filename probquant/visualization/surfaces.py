"""
3D Surface Visualization for probability binary options.

Generates plots showing how option prices and Greeks vary with the
underlying probability and days to expiry.
"""
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from matplotlib import cm

from ..config import DAYS_PER_YEAR, OUTPUT_DIR, RISK_FREE_RATE
from ..models import BinaryOptionPricer, OptionDescriptor, OptionKind

# value key -> (z-axis label, colormap)
_SURFACES = {
    'price': ('Option Price', cm.RdYlGn),
    'delta': ('Delta', cm.viridis),
    'gamma': ('Gamma', cm.hot),
    'theta': ('Theta (per day)', cm.coolwarm),
    'vega': ('Vega (per 1% vol)', cm.plasma),
}


class SurfacePlotter:
    """
    Generate 3D surface plots for a binary option on a probability.

    Plots available:
    - Price surface: mid price vs (probability, days to expiry)
    - Greek surfaces: delta, gamma, theta, vega
    - Combined dashboard: price, delta, gamma and theta in one figure
    """

    def __init__(
        self,
        strike: float = 0.5,
        volatility: float = 0.30,
        kind: OptionKind = OptionKind.CALL,
        output_dir: Optional[Path] = None
    ):
        """
        Initialize plotter.

        Args:
            strike: Strike probability
            volatility: Annualized volatility
            kind: CALL or PUT
            output_dir: Directory for saving plots
        """
        self.strike = strike
        self.volatility = volatility
        self.kind = OptionKind(kind)
        self.output_dir = output_dir or OUTPUT_DIR
        self.pricer = BinaryOptionPricer()

        self.probability_range = (0.01, 0.99)
        self.days_range = (1, 180)

    def set_ranges(
        self,
        probability_range: Tuple[float, float] = (0.01, 0.99),
        max_days: int = 180
    ) -> None:
        self.probability_range = probability_range
        self.days_range = (1, max_days)

    def compute_grid(self, steps: int = 40) -> Tuple[np.ndarray, np.ndarray, Dict[str, np.ndarray]]:
        """
        Evaluate price and Greeks over the probability/time grid.

        Returns:
            Tuple of (probabilities mesh, days mesh, {name: values})
        """
        probabilities = np.linspace(*self.probability_range, steps)
        days = np.linspace(*self.days_range, steps)
        P, D = np.meshgrid(probabilities, days)

        values = {name: np.zeros_like(P) for name in _SURFACES}
        expiry = datetime.now()

        for i in range(steps):
            for j in range(steps):
                descriptor = OptionDescriptor(
                    instrument_id="surface",
                    underlying_probability=float(P[i, j]),
                    strike_probability=self.strike,
                    expiry=expiry,
                    kind=self.kind,
                )
                quote = self.pricer.price(
                    descriptor,
                    volatility=self.volatility,
                    risk_free_rate=RISK_FREE_RATE,
                    liquidity_factor=0.0,
                    time_to_expiry=float(D[i, j]) / DAYS_PER_YEAR,
                )
                values['price'][i, j] = quote.mid_price
                values['delta'][i, j] = quote.delta
                values['gamma'][i, j] = quote.gamma
                values['theta'][i, j] = quote.theta
                values['vega'][i, j] = quote.vega

        return P, D, values

    def _save(self, fig, name: str, save: bool, show: bool) -> Optional[str]:
        plt.tight_layout()

        filepath = None
        if save:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            filepath = self.output_dir / f'{name}_{datetime.now():%Y%m%d_%H%M%S}.png'
            fig.savefig(filepath, dpi=150, bbox_inches='tight')

        if show:
            plt.show()
        else:
            plt.close(fig)

        return str(filepath) if filepath else None

    def plot_surface(
        self,
        value: str = 'price',
        steps: int = 50,
        save: bool = True,
        show: bool = False
    ) -> Optional[str]:
        """
        Plot one 3D surface.

        Args:
            value: One of price, delta, gamma, theta, vega
            steps: Grid resolution per axis
            save: Save plot to file
            show: Display plot interactively

        Returns:
            Path to saved file if save=True
        """
        if value not in _SURFACES:
            raise ValueError(f"Unknown surface '{value}', expected one of {sorted(_SURFACES)}")

        P, D, values = self.compute_grid(steps)
        label, cmap = _SURFACES[value]

        fig = plt.figure(figsize=(12, 8))
        ax = fig.add_subplot(111, projection='3d')
        surf = ax.plot_surface(P, D, values[value], cmap=cmap, linewidth=0, antialiased=True, alpha=0.8)

        ax.set_xlabel('Underlying Probability', fontsize=10)
        ax.set_ylabel('Days to Expiry', fontsize=10)
        ax.set_zlabel(label, fontsize=10)
        ax.set_title(
            f'{self.kind.value} {label} Surface\n'
            f'Strike: {self.strike:.2f}, Volatility: {self.volatility:.0%}',
            fontsize=12
        )
        fig.colorbar(surf, shrink=0.5, aspect=10, label=label)

        return self._save(fig, f'{value}_surface', save, show)

    def plot_dashboard(
        self,
        steps: int = 40,
        save: bool = True,
        show: bool = False
    ) -> Optional[str]:
        """
        Generate a 2x2 dashboard with Price, Delta, Gamma, and Theta.
        """
        P, D, values = self.compute_grid(steps)

        fig = plt.figure(figsize=(16, 12))
        for position, name in enumerate(('price', 'delta', 'gamma', 'theta'), start=1):
            label, cmap = _SURFACES[name]
            ax = fig.add_subplot(2, 2, position, projection='3d')
            ax.plot_surface(P, D, values[name], cmap=cmap, alpha=0.8)
            ax.set_xlabel('Probability')
            ax.set_ylabel('Days')
            ax.set_zlabel(label)
            ax.set_title(label)

        fig.suptitle(
            f'Binary {self.kind.value} Greeks Dashboard\n'
            f'Strike: {self.strike:.2f}, Volatility: {self.volatility:.0%}',
            fontsize=14
        )

        return self._save(fig, 'dashboard', save, show)


def generate_all_plots(
    strike: float = 0.5,
    volatility: float = 0.30,
    kind: OptionKind = OptionKind.CALL,
    output_dir: Optional[Path] = None,
    show: bool = False
) -> dict:
    """
    Generate every surface plot plus the dashboard.

    Returns:
        Dict with paths to generated files
    """
    plotter = SurfacePlotter(strike=strike, volatility=volatility, kind=kind, output_dir=output_dir)

    results = {}
    for name in _SURFACES:
        results[name] = plotter.plot_surface(name, save=True, show=show)
    results['dashboard'] = plotter.plot_dashboard(save=True, show=show)

    return results
