import matplotlib.pyplot as plt
import numpy as np


class Plotter:
    """
    Plotting utilities for beam assemblies and analysis results.

    Example:
        from IntrinsicBeam.Solvers.Plotter import Plotter

        # Reference and deformed shape (displacements magnified 10x)
        Plotter.plot_assembly(assembly, state, scale=10)

        # Tip displacement history of a time march
        Plotter.plot_history(history, point=10, field="u", component=2)
    """
    def __init__(self, scale=1.0, plot_forces=True, plot_reference=True, save=None, show=True,
                 title=None):
        self.scale = scale
        self.plot_forces = plot_forces
        self.plot_reference = plot_reference
        self.save = save
        self.show = show
        self.title = title

    def _finish(self, fig):
        if self.title:
            fig.suptitle(self.title)
        if self.save:
            fig.savefig(self.save)
        if self.show:
            plt.show()
        return fig

    def assembly(self, assembly, state=None, ax=None):
        if ax is None:
            fig = plt.figure()
            ax = fig.add_subplot(projection="3d")
        else:
            fig = ax.figure

        points = np.asarray(assembly.points)
        if self.plot_reference or state is None:
            for p1, p2 in zip(assembly.start, assembly.stop):
                seg = points[[p1, p2]]
                ax.plot(seg[:, 0], seg[:, 1], seg[:, 2], color="0.6", linestyle="--", lw=1)

        if state is not None:
            deformed = points + self.scale * state.point_field("u")
            mids = (np.array([e.x for e in assembly.elements])
                    + self.scale * state.element_field("u"))
            # Each element is drawn through its deformed midpoint
            for ielem, (p1, p2) in enumerate(zip(assembly.start, assembly.stop)):
                seg = np.vstack((deformed[p1], mids[ielem], deformed[p2]))
                ax.plot(seg[:, 0], seg[:, 1], seg[:, 2], color="tab:blue", lw=2)
            ax.scatter(deformed[:, 0], deformed[:, 1], deformed[:, 2], color="tab:blue", s=8)

            if self.plot_forces:
                forces = state.point_field("F")
                fmax = np.max(np.linalg.norm(forces, axis=1)) if forces.size else 0.0
                if fmax > 0:
                    span = np.max(np.ptp(points, axis=0)) or 1.0
                    arrows = 0.2 * span * forces / fmax
                    loaded = np.linalg.norm(forces, axis=1) > 0
                    ax.quiver(deformed[loaded, 0], deformed[loaded, 1], deformed[loaded, 2],
                              arrows[loaded, 0], arrows[loaded, 1], arrows[loaded, 2],
                              color="green")

        ax.set_xlabel("x")
        ax.set_ylabel("y")
        ax.set_zlabel("z")
        return self._finish(fig)

    def history(self, history, point, field="u", component=0, ax=None):
        if ax is None:
            fig, ax = plt.subplots()
        else:
            fig = ax.figure
        times = [s.t for s in history]
        values = [getattr(s.points[point], field)[component] for s in history]
        ax.plot(times, values)
        ax.set_xlabel("t")
        ax.set_ylabel(f"{field}[{component}] at point {point}")
        ax.grid(True)
        return self._finish(fig)

    @staticmethod
    def plot_assembly(assembly, state=None, scale=1.0, plot_forces=True, save=None, show=True):
        plotter = Plotter(scale=scale, plot_forces=plot_forces, save=save, show=show)
        return plotter.assembly(assembly, state)

    @staticmethod
    def plot_history(history, point, field="u", component=0, save=None, show=True):
        plotter = Plotter(save=save, show=show)
        return plotter.history(history, point, field, component)
